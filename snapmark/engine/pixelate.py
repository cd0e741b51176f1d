"""
Pixelation compositor.

Keeps a PixelateZone's fill in sync with its geometry. The fill is sampled
from the original, uncropped capture at native resolution: the zone is
converted to native pixels, shrunk to a coarse grid with an averaging
resize, then blown back up to the zone's canvas size with nearest-neighbor
so the blocks stay hard-edged.
"""

import math

import cv2
import numpy as np
from PySide6.QtCore import QRect
from PySide6.QtGui import QImage

from snapmark.engine.annotations import PixelateZone
from snapmark.engine.layout import BackgroundRaster, RasterLayout
from snapmark.services.logging_service import get_logger

DEFAULT_BLOCK_SIZE = 10.0


def qimage_to_array(image: QImage) -> np.ndarray:
    """Copy a QImage into an (height, width, 4) RGBA uint8 array."""
    if image.format() != QImage.Format.Format_RGBA8888:
        image = image.convertToFormat(QImage.Format.Format_RGBA8888)

    width = image.width()
    height = image.height()
    ptr = image.constBits()
    arr = np.frombuffer(ptr, np.uint8, count=image.sizeInBytes())
    arr = arr.reshape((height, image.bytesPerLine()))[:, : width * 4]
    return arr.reshape((height, width, 4)).copy()


def array_to_qimage(arr: np.ndarray) -> QImage:
    """Build a QImage from an (height, width, 4) RGBA uint8 array."""
    rgba = np.ascontiguousarray(arr, dtype=np.uint8)
    height, width = rgba.shape[:2]
    return QImage(
        rgba.data, width, height, width * 4,
        QImage.Format.Format_RGBA8888
    ).copy()


class PixelationCompositor:
    """
    Renders pixelated patches for PixelateZone objects.

    The number of blocks depends only on the zone's canvas size and the
    block size, never on the raster resolution.
    """

    def __init__(self, block_size: float = DEFAULT_BLOCK_SIZE) -> None:
        if block_size <= 0:
            raise ValueError(f"Block size must be positive, got {block_size}")
        self._logger = get_logger(__name__)
        self._block_size = float(block_size)

    @property
    def block_size(self) -> float:
        return self._block_size

    def grid_size(self, length: float) -> int:
        """Number of blocks along one axis; never less than one."""
        if length <= 0:
            return 1
        return max(1, math.ceil(length / self._block_size))

    def render(
        self,
        zone: PixelateZone,
        raster: BackgroundRaster,
        layout: RasterLayout,
    ) -> QImage:
        """
        Produce the pixelated patch for a zone.

        Args:
            zone: The zone whose canvas-space rect is rendered.
            raster: The active background raster (its root is sampled).
            layout: Display layout of the active raster.

        Returns:
            An RGBA image the size of the zone in canvas units, at least 1x1.
        """
        rect = zone.rect.normalized()
        out_w = max(1, int(round(rect.width())))
        out_h = max(1, int(round(rect.height())))
        grid_w = self.grid_size(rect.width())
        grid_h = self.grid_size(rect.height())

        # Canvas -> native pixels of the active raster -> native pixels of the capture
        native = layout.canvas_to_native(rect)
        root_x, root_y = raster.root_origin
        left = math.floor(native.left()) + root_x
        top = math.floor(native.top()) + root_y
        right = max(math.ceil(native.right()) + root_x, left + 1)
        bottom = max(math.ceil(native.bottom()) + root_y, top + 1)

        # Pixels outside the capture come back transparent
        source = raster.root.image.copy(QRect(left, top, right - left, bottom - top))
        region = qimage_to_array(source)

        small = cv2.resize(region, (grid_w, grid_h), interpolation=cv2.INTER_AREA)
        patch = cv2.resize(small, (out_w, out_h), interpolation=cv2.INTER_NEAREST)

        return array_to_qimage(patch)

    def cache_key(self, zone: PixelateZone, raster: BackgroundRaster, layout: RasterLayout):
        rect = zone.rect.normalized()
        return (
            rect.x(), rect.y(), rect.width(), rect.height(),
            raster.raster_id, layout, self._block_size,
        )

    def refresh(
        self,
        zone: PixelateZone,
        raster: BackgroundRaster,
        layout: RasterLayout,
    ) -> QImage:
        """Update the zone's cached patch if its geometry or raster changed."""
        key = self.cache_key(zone, raster, layout)
        if zone.patch is not None and zone.patch_key == key:
            return zone.patch

        zone.patch = self.render(zone, raster, layout)
        zone.patch_key = key
        self._logger.debug(
            f"Pixelated zone {zone.id[:8]} at {zone.patch.width()}x{zone.patch.height()}"
        )
        return zone.patch

"""
Background raster and coordinate spaces.

Two coordinate spaces are used by the engine:

- Native pixel space: raw pixel coordinates of a BackgroundRaster.
- Canvas space: the on-screen space annotation geometry is stored in. A
  raster is drawn into canvas space at ``RasterLayout.scale`` and shifted by
  ``RasterLayout.offset_x/offset_y``.

``RasterLayout.canvas_to_native`` and ``RasterLayout.native_to_canvas`` are
the only conversions between the two.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
from uuid import uuid4

from PySide6.QtCore import QBuffer, QByteArray, QIODevice, QRect, QRectF
from PySide6.QtGui import QImage

from snapmark.engine.errors import DecodeError

RASTER_FORMAT = QImage.Format.Format_ARGB32


@dataclass(frozen=True)
class RasterLayout:
    """Display scale and centering offset of a raster inside the canvas."""

    scale: float
    offset_x: float = 0.0
    offset_y: float = 0.0

    def canvas_to_native(self, rect: QRectF) -> QRectF:
        """Convert a canvas-space rectangle to native pixel space."""
        return QRectF(
            (rect.x() - self.offset_x) / self.scale,
            (rect.y() - self.offset_y) / self.scale,
            rect.width() / self.scale,
            rect.height() / self.scale,
        )

    def native_to_canvas(self, rect: QRectF) -> QRectF:
        """Convert a native pixel-space rectangle to canvas space."""
        return QRectF(
            rect.x() * self.scale + self.offset_x,
            rect.y() * self.scale + self.offset_y,
            rect.width() * self.scale,
            rect.height() * self.scale,
        )

    def display_rect(self, raster: "BackgroundRaster") -> QRectF:
        """Canvas-space rectangle covered by the whole raster."""
        return self.native_to_canvas(QRectF(0, 0, raster.width, raster.height))


def fit_layout(
    image_width: int,
    image_height: int,
    viewport_width: float,
    viewport_height: float,
    max_scale: float = 1.0,
) -> RasterLayout:
    """
    Fit an image inside the viewport and center it.

    The scale never exceeds max_scale, so small captures are not enlarged
    unless the caller asks for it.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Cannot lay out an empty raster ({image_width}x{image_height})")

    scale = min(viewport_width / image_width, viewport_height / image_height, max_scale)
    if scale <= 0:
        raise ValueError(f"Viewport {viewport_width}x{viewport_height} has no room for a raster")

    return RasterLayout(
        scale=scale,
        offset_x=(viewport_width - image_width * scale) / 2,
        offset_y=(viewport_height - image_height * scale) / 2,
    )


def decode_image(data: bytes) -> QImage:
    """Decode encoded bytes (PNG, JPEG, ...) into a QImage."""
    image = QImage()
    if not data or not image.loadFromData(QByteArray(data)) or image.isNull():
        raise DecodeError(f"Could not decode image data ({len(data or b'')} bytes)")
    return image.convertToFormat(RASTER_FORMAT)


def encode_image(image: QImage, fmt: str = "PNG") -> bytes:
    """Encode a QImage into bytes."""
    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    if not image.save(buffer, fmt):
        buffer.close()
        raise ValueError(f"Could not encode image as {fmt}")
    data = buffer.data().data()
    buffer.close()
    return bytes(data)


@dataclass(frozen=True, eq=False)
class BackgroundRaster:
    """
    The working image being annotated.

    Rasters are immutable and compared by identity. A crop produces a new
    raster that remembers its parent and where it sits inside it, so the
    original capture is always reachable through ``root``.
    """

    image: QImage
    encoded: bytes
    parent: Optional["BackgroundRaster"] = None
    origin: Tuple[int, int] = (0, 0)
    raster_id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def from_bytes(cls, data: bytes) -> "BackgroundRaster":
        return cls(image=decode_image(data), encoded=bytes(data))

    @classmethod
    def from_image(cls, image: QImage) -> "BackgroundRaster":
        if image.isNull():
            raise DecodeError("Cannot start a session from a null image")
        image = image.convertToFormat(RASTER_FORMAT)
        return cls(image=image, encoded=encode_image(image))

    @property
    def width(self) -> int:
        return self.image.width()

    @property
    def height(self) -> int:
        return self.image.height()

    @property
    def root(self) -> "BackgroundRaster":
        raster = self
        while raster.parent is not None:
            raster = raster.parent
        return raster

    @property
    def root_origin(self) -> Tuple[int, int]:
        """Native offset of this raster inside the original capture."""
        x, y = 0, 0
        raster: Optional[BackgroundRaster] = self
        while raster is not None and raster.parent is not None:
            x += raster.origin[0]
            y += raster.origin[1]
            raster = raster.parent
        return x, y

    def snap_to_pixels(self, native: QRectF) -> QRect:
        """Round a native rectangle to whole pixels, clamped to this raster."""
        left = max(0, int(round(native.left())))
        top = max(0, int(round(native.top())))
        right = min(self.width, int(round(native.right())))
        bottom = min(self.height, int(round(native.bottom())))
        return QRect(left, top, max(0, right - left), max(0, bottom - top))

    def extract(self, rect: QRect) -> "BackgroundRaster":
        """Copy a pixel rectangle out as a new raster (no resampling)."""
        image = self.image.copy(rect)
        return BackgroundRaster(
            image=image,
            encoded=encode_image(image),
            parent=self,
            origin=(rect.x(), rect.y()),
        )

    def __repr__(self) -> str:
        return f"BackgroundRaster({self.width}x{self.height}, id={self.raster_id[:8]})"


"""
Crop engine.

A crop replaces the background raster with a sub-image and carries every
annotation over into the new raster's canvas space. Positions are kept as
fractions of the crop region so they survive the new raster being laid out
at a different display scale; sizes are rescaled by the ratio of the new
display scale to the old one.

Annotations outside the region are remapped with the same formula and may
land outside the new canvas. They are never clipped or deleted.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from PySide6.QtCore import QPointF, QRectF

from snapmark.engine.annotations import Annotation, PointMapping, clone_annotation
from snapmark.engine.errors import DegenerateGeometryError
from snapmark.engine.layout import BackgroundRaster, RasterLayout
from snapmark.engine.scene import Scene, SceneRecords
from snapmark.services.logging_service import get_logger

MIN_CROP_SIZE = 10.0


@dataclass(frozen=True)
class FractionalRemap(PointMapping):
    """
    Maps canvas geometry from one region onto another.

    A point is expressed as a fraction of ``source`` and re-expanded inside
    ``target``. Lengths scale by the width ratio of the two regions, which
    equals new display scale / old display scale.
    """

    source: QRectF
    target: QRectF

    @property
    def scale_ratio(self) -> float:
        return self.target.width() / self.source.width()

    def fraction_of(self, point: QPointF) -> Tuple[float, float]:
        return (
            (point.x() - self.source.x()) / self.source.width(),
            (point.y() - self.source.y()) / self.source.height(),
        )

    def map_point(self, point: QPointF) -> QPointF:
        fx, fy = self.fraction_of(point)
        return QPointF(
            self.target.x() + fx * self.target.width(),
            self.target.y() + fy * self.target.height(),
        )

    def map_length(self, length: float) -> float:
        return length * self.scale_ratio

    def apply(self, objects: Iterable[Annotation]) -> List[Annotation]:
        """Remapped copies of the given objects; the inputs are not touched."""
        remapped = []
        for obj in objects:
            copy = clone_annotation(obj)
            copy.remap(self)
            remapped.append(copy)
        return remapped


def validate_region(region: QRectF, minimum: float) -> QRectF:
    """
    Normalize a crop region and check its size.

    Raises:
        DegenerateGeometryError: either side is below the minimum.
    """
    region = region.normalized()
    if region.width() < minimum or region.height() < minimum:
        raise DegenerateGeometryError(region.width(), region.height(), minimum)
    return region


@dataclass(frozen=True)
class CropResult:
    """
    A crop waiting for its new raster to be laid out.

    ``region`` is the canvas-space rectangle that was actually extracted
    (the requested region snapped to whole native pixels). ``records`` are
    the scene objects as they were when the crop was applied.
    """

    raster: BackgroundRaster
    region: QRectF
    records: SceneRecords

    def remap_into(self, layout: RasterLayout) -> List[Annotation]:
        """Re-expand every object into the canvas space of the new raster."""
        objects = Scene.rebuild_objects(self.records)
        remap = FractionalRemap(source=self.region, target=layout.display_rect(self.raster))
        return remap.apply(objects)


class CropEngine:
    """Turns a canvas-space crop region into a CropResult."""

    def __init__(self, min_size: float = MIN_CROP_SIZE) -> None:
        self._logger = get_logger(__name__)
        self._min_size = min_size

    @property
    def min_size(self) -> float:
        return self._min_size

    def apply_crop(self, region: QRectF, scene: Scene) -> CropResult:
        """
        Extract the region from the scene's raster.

        Args:
            region: Crop rectangle in canvas space.
            scene: The scene whose raster and objects are cropped.

        Returns:
            The extracted raster with the object records to remap once the
            new raster has a layout.

        Raises:
            DegenerateGeometryError: the region (after clamping to the
                raster) is smaller than the minimum crop size.
        """
        region = validate_region(region, self._min_size)
        layout = scene.layout
        raster = scene.background

        pixels = raster.snap_to_pixels(layout.canvas_to_native(region))
        extracted = layout.native_to_canvas(QRectF(pixels))
        validate_region(extracted, self._min_size)

        new_raster = raster.extract(pixels)
        self._logger.info(
            f"Cropping {raster.width}x{raster.height} to "
            f"{new_raster.width}x{new_raster.height} at ({pixels.x()}, {pixels.y()})"
        )
        return CropResult(raster=new_raster, region=extracted, records=scene.serialize())

"""
Scene painting and export.

``paint_annotation`` draws one annotation in canvas space, dispatched on the
annotation's type tag. The host canvas and the exporter share it, so the
exported image matches what was on screen.
"""

from typing import Callable, Dict, Optional

from PySide6.QtCore import QPointF, Qt
from PySide6.QtGui import QImage, QPainter, QPainterPath, QPen, QPolygonF

from snapmark.engine.annotations import (
    Annotation,
    AnnotationType,
    ArrowAnnotation,
    EllipseAnnotation,
    FreehandAnnotation,
    PixelateZone,
    RectangleAnnotation,
    TextAnnotation,
    text_font,
)
from snapmark.engine.layout import RASTER_FORMAT, encode_image
from snapmark.engine.pixelate import PixelationCompositor
from snapmark.engine.scene import Scene
from snapmark.services.logging_service import get_logger

PatchProvider = Callable[[PixelateZone], Optional[QImage]]


def _stroke_pen(color, width: float) -> QPen:
    pen = QPen(color)
    pen.setWidthF(width)
    pen.setCapStyle(Qt.PenCapStyle.RoundCap)
    pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
    return pen


def _paint_arrow(painter: QPainter, arrow: ArrowAnnotation, patch_for: PatchProvider) -> None:
    painter.setPen(_stroke_pen(arrow.stroke_color, arrow.stroke_width))
    painter.setBrush(arrow.stroke_color)
    painter.drawLine(arrow.start, arrow.end)
    painter.drawPolygon(QPolygonF(arrow.head_points()))


def _paint_rectangle(painter: QPainter, rect: RectangleAnnotation, patch_for: PatchProvider) -> None:
    painter.setPen(_stroke_pen(rect.stroke_color, rect.stroke_width))
    painter.setBrush(Qt.BrushStyle.NoBrush)
    painter.drawRect(rect.rect)


def _paint_ellipse(painter: QPainter, ellipse: EllipseAnnotation, patch_for: PatchProvider) -> None:
    painter.setPen(_stroke_pen(ellipse.stroke_color, ellipse.stroke_width))
    painter.setBrush(Qt.BrushStyle.NoBrush)
    painter.drawEllipse(ellipse.bounding_rect)


def _paint_freehand(painter: QPainter, path: FreehandAnnotation, patch_for: PatchProvider) -> None:
    if not path.points:
        return

    painter_path = QPainterPath(path.points[0])
    for point in path.points[1:]:
        painter_path.lineTo(point)

    painter.setPen(_stroke_pen(path.stroke_color, path.stroke_width))
    painter.setBrush(Qt.BrushStyle.NoBrush)
    painter.drawPath(painter_path)


def _paint_text(painter: QPainter, text: TextAnnotation, patch_for: PatchProvider) -> None:
    painter.setFont(text_font(text.font_size))
    painter.setPen(text.color)
    painter.drawText(
        text.bounding_rect,
        Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop,
        text.text,
    )


def _paint_pixelate(painter: QPainter, zone: PixelateZone, patch_for: PatchProvider) -> None:
    patch = patch_for(zone)
    if patch is None or patch.isNull():
        return

    # Blocks must stay hard-edged when the patch is scaled for export
    painter.save()
    painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform, False)
    painter.drawImage(zone.rect.normalized(), patch)
    painter.restore()


PAINTERS: Dict[AnnotationType, Callable[[QPainter, Annotation, PatchProvider], None]] = {
    AnnotationType.ARROW: _paint_arrow,
    AnnotationType.RECTANGLE: _paint_rectangle,
    AnnotationType.ELLIPSE: _paint_ellipse,
    AnnotationType.FREEHAND: _paint_freehand,
    AnnotationType.TEXT: _paint_text,
    AnnotationType.PIXELATE: _paint_pixelate,
}


def paint_annotation(painter: QPainter, annotation: Annotation, patch_for: PatchProvider) -> None:
    """Paint one annotation; the painter is already in canvas space."""
    PAINTERS[annotation.annotation_type](painter, annotation, patch_for)


def paint_scene(painter: QPainter, scene: Scene, patch_for: PatchProvider) -> None:
    """Paint the background raster and every object bottom-most first."""
    painter.drawImage(scene.layout.display_rect(scene.background), scene.background.image)
    for annotation in scene.objects_in_z_order():
        paint_annotation(painter, annotation, patch_for)


class Exporter:
    """
    Flattens a scene into one raster.

    The output is the active raster at native resolution times the
    multiplier, with every annotation painted over it.
    """

    def __init__(self, compositor: PixelationCompositor) -> None:
        self._logger = get_logger(__name__)
        self._compositor = compositor

    def _patch_for(self, scene: Scene) -> PatchProvider:
        def provider(zone: PixelateZone) -> Optional[QImage]:
            return self._compositor.refresh(zone, scene.background, scene.layout)
        return provider

    def flatten(self, scene: Scene, multiplier: float = 1.0) -> QImage:
        """
        Render background plus annotations.

        Args:
            scene: Scene to flatten.
            multiplier: Output size relative to the raster's native size.

        Returns:
            A new image in the raster's pixel format.
        """
        if multiplier <= 0:
            raise ValueError(f"Export multiplier must be positive, got {multiplier}")

        raster = scene.background
        layout = scene.layout
        width = max(1, int(round(raster.width * multiplier)))
        height = max(1, int(round(raster.height * multiplier)))

        result = QImage(width, height, RASTER_FORMAT)
        result.fill(Qt.GlobalColor.transparent)

        painter = QPainter(result)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        # Canvas space -> native pixels -> output pixels
        factor = multiplier / layout.scale
        painter.scale(factor, factor)
        painter.translate(QPointF(-layout.offset_x, -layout.offset_y))

        paint_scene(painter, scene, self._patch_for(scene))
        painter.end()

        self._logger.info(
            f"Exported {len(scene)} annotations over {raster} at {width}x{height}"
        )
        return result

    def flatten_png(self, scene: Scene, multiplier: float = 1.0) -> bytes:
        return encode_image(self.flatten(scene, multiplier), "PNG")

"""
Editor canvas widget for SnapMark.

The EditorCanvas is the drawing area that displays:
- The background raster, fitted and centered in the widget
- All annotation objects on top
- Selection handles for selected annotations
- The pending crop rectangle with the outside dimmed

Widget coordinates are canvas coordinates: the widget size is the engine
viewport. All interaction is forwarded to the AnnotationEngine.
"""

from typing import Optional

from PySide6.QtCore import QPointF, QRectF, Qt, Signal
from PySide6.QtGui import (
    QColor,
    QFontMetricsF,
    QImage,
    QKeyEvent,
    QMouseEvent,
    QPainter,
    QPen,
)
from PySide6.QtWidgets import QWidget

from snapmark.engine.annotations import (
    Annotation,
    ArrowAnnotation,
    PixelateZone,
    TextAnnotation,
    text_font,
)
from snapmark.engine.engine import AnnotationEngine, QtRasterLoader
from snapmark.engine.exporter import paint_scene
from snapmark.engine.settings import EngineSettings
from snapmark.engine.tools import InteractionState
from snapmark.services.logging_service import get_logger

BACKGROUND_COLOR = QColor(26, 26, 26)
SELECTION_COLOR = QColor(80, 144, 208)

RESIZE_CURSORS = {
    0: Qt.CursorShape.SizeFDiagCursor,  # TL
    1: Qt.CursorShape.SizeVerCursor,    # TC
    2: Qt.CursorShape.SizeBDiagCursor,  # TR
    3: Qt.CursorShape.SizeHorCursor,    # ML
    4: Qt.CursorShape.SizeHorCursor,    # MR
    5: Qt.CursorShape.SizeBDiagCursor,  # BL
    6: Qt.CursorShape.SizeVerCursor,    # BC
    7: Qt.CursorShape.SizeFDiagCursor,  # BR
}


class EditorCanvas(QWidget):
    """
    Canvas widget hosting an AnnotationEngine.

    Signals:
        dimensions_changed: Native size of the active raster (width, height).
    """

    dimensions_changed = Signal(int, int)

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)
        self._logger = get_logger(__name__)
        self._engine = AnnotationEngine(settings, QtRasterLoader(), self)
        self._setup_widget()
        self._connect_engine()

    def _setup_widget(self) -> None:
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setMinimumSize(400, 300)
        self.setCursor(Qt.CursorShape.ArrowCursor)

    def _connect_engine(self) -> None:
        engine = self._engine
        engine.scene_changed.connect(self.update)
        engine.selection_changed.connect(self.update)
        engine.crop_region_changed.connect(lambda region: self.update())
        engine.state_changed.connect(lambda state: self.update())
        engine.tool_changed.connect(lambda tool_type: self.setCursor(engine.tool.cursor))
        engine.raster_changed.connect(self._on_raster_changed)

    @property
    def engine(self) -> AnnotationEngine:
        return self._engine

    def set_image(self, image: QImage) -> None:
        """Start a session on the given image at the current widget size."""
        self._engine.set_viewport(self.width(), self.height())
        self._engine.load_qimage(image)

    def _on_raster_changed(self, raster) -> None:
        self.dimensions_changed.emit(raster.width, raster.height)
        self.update()

    # ─── Painting ─────────────────────────────────────────────────────────

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        painter.fillRect(self.rect(), BACKGROUND_COLOR)

        scene = self._engine.scene
        if scene is None:
            painter.setPen(QColor(100, 100, 100))
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "No image loaded")
            return

        paint_scene(painter, scene, self._patch_for)

        for annotation in self._engine.selected_objects():
            self._draw_selection_handles(painter, annotation)

        editing = self._engine.editing_text
        if editing is not None:
            self._draw_text_cursor(painter, editing)

        region = self._engine.crop_region
        if region is not None:
            self._draw_crop_overlay(painter, scene.layout.display_rect(scene.background), region)

        painter.end()

    def _patch_for(self, zone: PixelateZone) -> Optional[QImage]:
        scene = self._engine.scene
        return self._engine.compositor.refresh(zone, scene.background, scene.layout)

    def _draw_selection_handles(self, painter: QPainter, annotation: Annotation) -> None:
        """Draw selection handles around an annotation."""
        painter.setPen(QPen(SELECTION_COLOR, 1))
        painter.setBrush(Qt.BrushStyle.NoBrush)
        if not isinstance(annotation, ArrowAnnotation):
            painter.drawRect(annotation.bounding_rect)

        painter.setBrush(QColor(255, 255, 255))
        for handle in annotation.resize_handles():
            painter.drawRect(handle)

    def _draw_text_cursor(self, painter: QPainter, annotation: TextAnnotation) -> None:
        """Draw the caret at the end of the text being edited."""
        metrics = QFontMetricsF(text_font(annotation.font_size))
        lines = annotation.lines
        x = annotation.origin.x() + metrics.horizontalAdvance(lines[-1])
        y = annotation.origin.y() + metrics.lineSpacing() * (len(lines) - 1)

        painter.setPen(QPen(annotation.color, 2))
        painter.drawLine(QPointF(x, y), QPointF(x, y + metrics.height()))

    def _draw_crop_overlay(self, painter: QPainter, image_rect: QRectF, crop_rect: QRectF) -> None:
        """Draw crop overlay with dimmed regions outside crop area."""
        painter.setBrush(QColor(0, 0, 0, 128))
        painter.setPen(Qt.PenStyle.NoPen)

        left, top = image_rect.left(), image_rect.top()
        right, bottom = image_rect.right(), image_rect.bottom()
        # Top, bottom, left and right bands
        painter.drawRect(QRectF(left, top, image_rect.width(), max(0.0, crop_rect.top() - top)))
        painter.drawRect(QRectF(left, crop_rect.bottom(), image_rect.width(), max(0.0, bottom - crop_rect.bottom())))
        painter.drawRect(QRectF(left, crop_rect.top(), max(0.0, crop_rect.left() - left), crop_rect.height()))
        painter.drawRect(QRectF(crop_rect.right(), crop_rect.top(), max(0.0, right - crop_rect.right()), crop_rect.height()))

        painter.setPen(QPen(QColor(255, 255, 255), 2))
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRect(crop_rect)

    # ─── Event Handlers ───────────────────────────────────────────────────

    def mousePressEvent(self, event: QMouseEvent) -> None:
        if event.button() == Qt.MouseButton.LeftButton:
            self._engine.pointer_down(event.position())
            return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event: QMouseEvent) -> None:
        pos = event.position()
        if event.buttons() & Qt.MouseButton.LeftButton:
            self._engine.pointer_move(pos)
        else:
            self._update_cursor_for_position(pos)

    def mouseReleaseEvent(self, event: QMouseEvent) -> None:
        if event.button() == Qt.MouseButton.LeftButton:
            self._engine.pointer_up(event.position())
            return
        super().mouseReleaseEvent(event)

    def _update_cursor_for_position(self, pos: QPointF) -> None:
        """Update cursor based on what's under the pointer."""
        engine = self._engine
        if engine.state != InteractionState.IDLE:
            return

        for selected in engine.selected_objects():
            for index, handle in enumerate(selected.resize_handles()):
                if handle.contains(pos):
                    if isinstance(selected, ArrowAnnotation):
                        self.setCursor(Qt.CursorShape.CrossCursor)
                    else:
                        self.setCursor(RESIZE_CURSORS.get(index, Qt.CursorShape.ArrowCursor))
                    return

        if engine.hit_test(pos) is not None:
            self.setCursor(Qt.CursorShape.SizeAllCursor)
            return

        self.setCursor(engine.tool.cursor)

    def keyPressEvent(self, event: QKeyEvent) -> None:
        if self._engine.on_key_press(event.key(), event.modifiers(), event.text()):
            return
        super().keyPressEvent(event)

    def resizeEvent(self, event) -> None:
        """Re-fit the raster; annotations follow it."""
        super().resizeEvent(event)
        self._engine.set_viewport(self.width(), self.height())

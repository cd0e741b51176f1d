"""
Tool state machine for the annotation engine.

Tools turn pointer gestures into scene mutations. The engine owns the
interaction state and routes pointer events to the active tool; tools only
call back into the engine's mutation helpers.

States:
- IDLE: a tool is selected, no gesture in progress
- DRAWING: pointer is down and an object is being built (or dragged)
- EDITING_TEXT: a text object is in inline edit
- CROPPING: a crop rectangle is being dragged or waits for apply/cancel

Tools:
- SelectTool: Select, move and resize annotations
- ShapeTool: Arrow, rectangle, ellipse and pixelate zone (drag to size)
- FreehandTool: Continuous path committed on release
- TextTool: Click to place text and edit it inline
- CropTool: Define the pending crop rectangle
"""

import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional

from PySide6.QtCore import QPointF, QRectF, Qt

from snapmark.engine.annotations import (
    TEXT_PLACEHOLDER,
    Annotation,
    AnnotationStyle,
    AnnotationType,
    ArrowAnnotation,
    EllipseAnnotation,
    FreehandAnnotation,
    PixelateZone,
    PointMapping,
    RectangleAnnotation,
    TextAnnotation,
)
from snapmark.engine.errors import DegenerateGeometryError
from snapmark.services.logging_service import get_logger

if TYPE_CHECKING:
    from snapmark.engine.engine import AnnotationEngine


class InteractionState(Enum):
    """Interaction state of the engine."""
    IDLE = "idle"
    DRAWING = "drawing"
    EDITING_TEXT = "editing_text"
    CROPPING = "cropping"


class ToolType(Enum):
    """Enum for tool types."""
    SELECT = "select"
    ARROW = "arrow"
    RECTANGLE = "rectangle"
    ELLIPSE = "ellipse"
    TEXT = "text"
    FREEHAND = "freehand"
    PIXELATE = "pixelate"
    CROP = "crop"


TOOL_SHORTCUTS: Dict[int, ToolType] = {
    Qt.Key.Key_V: ToolType.SELECT,
    Qt.Key.Key_A: ToolType.ARROW,
    Qt.Key.Key_R: ToolType.RECTANGLE,
    Qt.Key.Key_E: ToolType.ELLIPSE,
    Qt.Key.Key_T: ToolType.TEXT,
    Qt.Key.Key_P: ToolType.FREEHAND,
    Qt.Key.Key_X: ToolType.PIXELATE,
    Qt.Key.Key_C: ToolType.CROP,
}


def validate_shape(annotation: Annotation, minimum: float) -> None:
    """
    Reject shapes too small to keep.

    Arrows are measured by length; box-like shapes by both sides.

    Raises:
        DegenerateGeometryError: the shape is below ``minimum``.
    """
    if isinstance(annotation, ArrowAnnotation):
        length = math.hypot(
            annotation.end.x() - annotation.start.x(),
            annotation.end.y() - annotation.start.y(),
        )
        if length < minimum:
            raise DegenerateGeometryError(length, 0.0, minimum)
        return

    if isinstance(annotation, (RectangleAnnotation, PixelateZone)):
        rect = annotation.rect
    elif isinstance(annotation, EllipseAnnotation):
        rect = annotation.bounding_rect
    else:
        return

    if rect.width() < minimum or rect.height() < minimum:
        raise DegenerateGeometryError(rect.width(), rect.height(), minimum)


# ─── Shape factories ─────────────────────────────────────────────────────────

def _new_arrow(pos: QPointF, style: AnnotationStyle) -> Annotation:
    # Degenerate 1px arrow until the pointer moves
    return ArrowAnnotation(
        start=QPointF(pos),
        end=QPointF(pos.x() + 1, pos.y() + 1),
        stroke_color=style.stroke_color,
        stroke_width=style.stroke_width,
        selectable=False,
    )


def _new_rectangle(pos: QPointF, style: AnnotationStyle) -> Annotation:
    return RectangleAnnotation(
        rect=QRectF(pos, pos),
        stroke_color=style.stroke_color,
        stroke_width=style.stroke_width,
        selectable=False,
    )


def _new_ellipse(pos: QPointF, style: AnnotationStyle) -> Annotation:
    return EllipseAnnotation(
        origin=QPointF(pos),
        rx=0.0,
        ry=0.0,
        stroke_color=style.stroke_color,
        stroke_width=style.stroke_width,
        selectable=False,
    )


def _new_pixelate(pos: QPointF, style: AnnotationStyle) -> Annotation:
    return PixelateZone(rect=QRectF(pos, pos), selectable=False)


def _update_arrow(annotation: ArrowAnnotation, anchor: QPointF, pos: QPointF) -> None:
    # Head is derived from start/end, so a flipped direction is picked up on paint
    annotation.start = QPointF(anchor)
    annotation.end = QPointF(pos)


def _update_box(annotation, anchor: QPointF, pos: QPointF) -> None:
    annotation.rect = QRectF(anchor, pos).normalized()


def _update_ellipse(annotation: EllipseAnnotation, anchor: QPointF, pos: QPointF) -> None:
    annotation.set_bounding_rect(QRectF(anchor, pos))


SHAPE_FACTORIES: Dict[AnnotationType, Callable[[QPointF, AnnotationStyle], Annotation]] = {
    AnnotationType.ARROW: _new_arrow,
    AnnotationType.RECTANGLE: _new_rectangle,
    AnnotationType.ELLIPSE: _new_ellipse,
    AnnotationType.PIXELATE: _new_pixelate,
}

SHAPE_UPDATERS: Dict[AnnotationType, Callable[[Annotation, QPointF, QPointF], None]] = {
    AnnotationType.ARROW: _update_arrow,
    AnnotationType.RECTANGLE: _update_box,
    AnnotationType.ELLIPSE: _update_ellipse,
    AnnotationType.PIXELATE: _update_box,
}


# ─── Tools ───────────────────────────────────────────────────────────────────

class ToolBase(ABC):
    """
    Base class for all tools.

    Tools handle pointer events routed by the engine and manipulate the
    scene through the engine's helpers.
    """

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    @property
    @abstractmethod
    def tool_type(self) -> ToolType:
        """Return the type of this tool."""
        pass

    @property
    @abstractmethod
    def cursor(self) -> Qt.CursorShape:
        """Return the cursor to use when this tool is active."""
        pass

    @abstractmethod
    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        pass

    def on_pointer_move(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        pass

    def on_pointer_up(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        pass

    def on_deactivate(self, engine: "AnnotationEngine") -> None:
        """Called when tool is deactivated (another tool selected)."""
        pass

    def on_remap(self, mapping: PointMapping) -> None:
        """Move gesture state into a new canvas space (viewport resize)."""
        pass


class SelectTool(ToolBase):
    """
    Select, move and resize annotations.

    - Click on annotation: Select it
    - Drag annotation: Move it
    - Drag handle of the selected annotation: Resize it
    - Click on empty canvas: Clear selection

    A move or resize commits one snapshot on release.
    """

    def __init__(self) -> None:
        super().__init__()
        self._target: Optional[Annotation] = None
        self._resize_handle: int = -1
        self._last_pos: Optional[QPointF] = None
        self._changed = False

    @property
    def tool_type(self) -> ToolType:
        return ToolType.SELECT

    @property
    def cursor(self) -> Qt.CursorShape:
        return Qt.CursorShape.ArrowCursor

    def _hit_handle(self, pos: QPointF, engine: "AnnotationEngine") -> bool:
        for selected in reversed(engine.selected_objects()):
            for index, handle in enumerate(selected.resize_handles()):
                if handle.contains(pos):
                    self._target = selected
                    self._resize_handle = index
                    return True
        return False

    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        self._last_pos = QPointF(pos)
        self._changed = False

        # Handles of the current selection win over the objects below them
        if self._hit_handle(pos, engine):
            engine.set_state(InteractionState.DRAWING)
            return

        hit = engine.hit_test(pos)
        if hit is None:
            engine.select([])
            self._target = None
            return

        engine.select([hit.id])
        self._target = hit
        self._resize_handle = -1
        engine.set_state(InteractionState.DRAWING)

    def on_pointer_move(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._target is None or self._last_pos is None:
            return

        if self._resize_handle >= 0:
            self._target.resize(self._resize_handle, pos)
        else:
            dx = pos.x() - self._last_pos.x()
            dy = pos.y() - self._last_pos.y()
            if dx == 0 and dy == 0:
                return
            self._target.move_by(dx, dy)

        self._last_pos = QPointF(pos)
        self._changed = True
        engine.refresh_pixelation(self._target)
        engine.notify_scene_changed()

    def on_pointer_up(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._target is not None:
            self.on_pointer_move(pos, engine)
            if self._changed:
                action = "resize" if self._resize_handle >= 0 else "move"
                engine.commit_snapshot(f"{action} {self._target.annotation_type.value}")
            engine.set_state(InteractionState.IDLE)

        self._target = None
        self._resize_handle = -1
        self._last_pos = None
        self._changed = False

    def on_remap(self, mapping: PointMapping) -> None:
        if self._last_pos is not None:
            self._last_pos = mapping.map_point(self._last_pos)


class ShapeTool(ToolBase):
    """
    Drag-to-size tool for arrows, rectangles, ellipses and pixelate zones.

    The object is inserted provisionally on pointer down and committed on
    release unless it ends up below the minimum shape size.
    """

    def __init__(self, annotation_type: AnnotationType, tool_type: ToolType) -> None:
        super().__init__()
        self._annotation_type = annotation_type
        self._tool_type = tool_type
        self._anchor: Optional[QPointF] = None
        self._current: Optional[Annotation] = None

    @property
    def tool_type(self) -> ToolType:
        return self._tool_type

    @property
    def cursor(self) -> Qt.CursorShape:
        return Qt.CursorShape.CrossCursor

    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        engine.select([])
        self._anchor = QPointF(pos)
        self._current = SHAPE_FACTORIES[self._annotation_type](pos, engine.style.clone())
        engine.add_provisional(self._current)
        engine.refresh_pixelation(self._current)
        engine.set_state(InteractionState.DRAWING)

    def on_pointer_move(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._current is None or self._anchor is None:
            return
        SHAPE_UPDATERS[self._annotation_type](self._current, self._anchor, pos)
        engine.refresh_pixelation(self._current)
        engine.notify_scene_changed()

    def on_pointer_up(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._current is None or self._anchor is None:
            return

        annotation = self._current
        SHAPE_UPDATERS[self._annotation_type](annotation, self._anchor, pos)
        self._current = None
        self._anchor = None

        try:
            validate_shape(annotation, engine.settings.min_shape_size)
        except DegenerateGeometryError as exc:
            self._logger.debug(f"Discarded {annotation.annotation_type.value}: {exc}")
            engine.discard_provisional(annotation)
            engine.set_state(InteractionState.IDLE)
            return

        annotation.selectable = True
        engine.refresh_pixelation(annotation)
        engine.select([annotation.id])
        engine.commit_snapshot(f"add {annotation.annotation_type.value}")
        engine.set_state(InteractionState.IDLE)

    def on_remap(self, mapping: PointMapping) -> None:
        # The provisional object itself is remapped by the engine
        if self._anchor is not None:
            self._anchor = mapping.map_point(self._anchor)


class FreehandTool(ToolBase):
    """
    Freehand drawing tool.

    Accumulates one continuous path for the whole gesture.
    """

    def __init__(self) -> None:
        super().__init__()
        self._current: Optional[FreehandAnnotation] = None

    @property
    def tool_type(self) -> ToolType:
        return ToolType.FREEHAND

    @property
    def cursor(self) -> Qt.CursorShape:
        return Qt.CursorShape.CrossCursor

    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        style = engine.style.clone()
        engine.select([])
        self._current = FreehandAnnotation(
            points=[QPointF(pos)],
            stroke_color=style.stroke_color,
            stroke_width=style.stroke_width,
            selectable=False,
        )
        engine.add_provisional(self._current)
        engine.set_state(InteractionState.DRAWING)

    def on_pointer_move(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._current is not None and self._current.add_point(pos):
            engine.notify_scene_changed()

    def on_pointer_up(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._current is None:
            return

        path = self._current
        path.add_point(pos)
        self._current = None

        if len(path.points) < 2:
            self._logger.debug("Discarded freehand path with a single point")
            engine.discard_provisional(path)
        else:
            path.selectable = True
            engine.commit_snapshot("add freehand")
        engine.set_state(InteractionState.IDLE)


class TextTool(ToolBase):
    """
    Text tool.

    - Click on empty canvas: Place new text with a placeholder
    - Click on existing text: Edit it

    There is no drawing phase: the text enters inline edit immediately and
    the active tool reverts to select.
    """

    @property
    def tool_type(self) -> ToolType:
        return ToolType.TEXT

    @property
    def cursor(self) -> Qt.CursorShape:
        return Qt.CursorShape.IBeamCursor

    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        hit = engine.hit_test(pos)
        if isinstance(hit, TextAnnotation):
            engine.begin_text_edit(hit, is_new=False)
            return

        style = engine.style.clone()
        text = TextAnnotation(
            origin=QPointF(pos),
            text=TEXT_PLACEHOLDER,
            font_size=style.font_size,
            color=style.stroke_color,
        )
        engine.begin_text_edit(text, is_new=True)


class CropTool(ToolBase):
    """
    Defines the pending crop rectangle.

    The rectangle is overlay state only; nothing enters the scene until the
    host applies the crop. Regions under the minimum crop size are dropped
    on release.
    """

    def __init__(self) -> None:
        super().__init__()
        self._anchor: Optional[QPointF] = None

    @property
    def tool_type(self) -> ToolType:
        return ToolType.CROP

    @property
    def cursor(self) -> Qt.CursorShape:
        return Qt.CursorShape.CrossCursor

    def on_pointer_down(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        engine.select([])
        self._anchor = QPointF(pos)
        engine.set_crop_region(QRectF(pos, pos))
        engine.set_state(InteractionState.CROPPING)

    def on_pointer_move(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._anchor is not None:
            engine.set_crop_region(QRectF(self._anchor, pos).normalized())

    def on_pointer_up(self, pos: QPointF, engine: "AnnotationEngine") -> None:
        if self._anchor is None:
            return

        region = QRectF(self._anchor, pos).normalized()
        self._anchor = None
        minimum = engine.settings.min_crop_size
        if region.width() < minimum or region.height() < minimum:
            self._logger.debug(
                f"Discarded crop region {region.width():.1f}x{region.height():.1f}"
            )
            engine.set_crop_region(None)
            engine.set_state(InteractionState.IDLE)
            return

        engine.set_crop_region(region)

    def on_deactivate(self, engine: "AnnotationEngine") -> None:
        self._anchor = None

    def on_remap(self, mapping: PointMapping) -> None:
        if self._anchor is not None:
            self._anchor = mapping.map_point(self._anchor)


def create_tool(tool_type: ToolType) -> ToolBase:
    """
    Factory function to create tools by type.

    Args:
        tool_type: The type of tool to create.

    Returns:
        A new instance of the requested tool.
    """
    shape_types = {
        ToolType.ARROW: AnnotationType.ARROW,
        ToolType.RECTANGLE: AnnotationType.RECTANGLE,
        ToolType.ELLIPSE: AnnotationType.ELLIPSE,
        ToolType.PIXELATE: AnnotationType.PIXELATE,
    }
    if tool_type in shape_types:
        return ShapeTool(shape_types[tool_type], tool_type)

    tool_classes = {
        ToolType.SELECT: SelectTool,
        ToolType.TEXT: TextTool,
        ToolType.FREEHAND: FreehandTool,
        ToolType.CROP: CropTool,
    }

    if tool_type not in tool_classes:
        raise ValueError(f"Unknown tool type: {tool_type}")

    return tool_classes[tool_type]()

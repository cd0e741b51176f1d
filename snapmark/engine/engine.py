"""
Annotation engine.

The engine owns the scene, the interaction state, the active tool and the
history. Hosts feed it pointer and key events and read the scene back for
painting; they never mutate geometry themselves.

Establishing a raster (working out its display layout) goes through a
RasterLoader and may complete later. Every request captures the engine
generation, and a completion whose generation is no longer current is
discarded. Switching tools, cancelling a crop or starting another request
bumps the generation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from PySide6.QtCore import QObject, QPointF, QRectF, Qt, QTimer, Signal
from PySide6.QtGui import QColor, QImage

from snapmark.engine.annotations import (
    Annotation,
    AnnotationStyle,
    PixelateZone,
    TextAnnotation,
)
from snapmark.engine.crop import CropEngine, CropResult, FractionalRemap
from snapmark.engine.errors import (
    DegenerateGeometryError,
    EngineError,
    EngineInvariantError,
    SceneCorruptError,
)
from snapmark.engine.exporter import Exporter
from snapmark.engine.history import HistoryEntry, HistoryManager
from snapmark.engine.layout import BackgroundRaster, RasterLayout, fit_layout
from snapmark.engine.pixelate import PixelationCompositor
from snapmark.engine.scene import Scene
from snapmark.engine.settings import EngineSettings
from snapmark.engine.tools import (
    TOOL_SHORTCUTS,
    InteractionState,
    ToolBase,
    ToolType,
    create_tool,
)
from snapmark.services.logging_service import get_logger


# ─── Raster loaders ──────────────────────────────────────────────────────────

class RasterLoader(ABC):
    """Establishes a raster for display and reports back when done."""

    @abstractmethod
    def establish(self, raster: BackgroundRaster, on_done: Callable[[], None]) -> None:
        pass


class ImmediateRasterLoader(RasterLoader):
    """Completes synchronously. Used headless and in tests."""

    def establish(self, raster: BackgroundRaster, on_done: Callable[[], None]) -> None:
        on_done()


class QtRasterLoader(RasterLoader):
    """Completes on the next turn of the Qt event loop."""

    def establish(self, raster: BackgroundRaster, on_done: Callable[[], None]) -> None:
        QTimer.singleShot(0, on_done)


@dataclass(frozen=True)
class _PendingRaster:
    generation: int
    raster: BackgroundRaster
    on_ready: Callable[[RasterLayout], None]
    reason: str
    cancellable: bool = True


# ─── Engine ──────────────────────────────────────────────────────────────────

class AnnotationEngine(QObject):
    """
    Annotation scene engine.

    Signals:
        scene_changed: Objects or their geometry changed.
        raster_changed: The active raster was replaced (BackgroundRaster).
        state_changed: Interaction state changed (InteractionState).
        tool_changed: Active tool changed (ToolType).
        selection_changed: Selected ids changed.
        history_changed: (can_undo, can_redo).
        crop_region_changed: Pending crop rectangle (QRectF or None).
        text_edit_finished: A text edit ended (the TextAnnotation or None).
    """

    scene_changed = Signal()
    raster_changed = Signal(object)
    state_changed = Signal(object)
    tool_changed = Signal(object)
    selection_changed = Signal()
    history_changed = Signal(bool, bool)
    crop_region_changed = Signal(object)
    text_edit_finished = Signal(object)

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        raster_loader: Optional[RasterLoader] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._logger = get_logger(__name__)
        self._settings = settings or EngineSettings()
        self._loader = raster_loader or ImmediateRasterLoader()

        self._compositor = PixelationCompositor(self._settings.block_size)
        self._crop_engine = CropEngine(self._settings.min_crop_size)
        self._exporter = Exporter(self._compositor)
        self._history = HistoryManager(self._settings.history_limit)

        self._style = AnnotationStyle(
            stroke_color=QColor(self._settings.default_color),
            stroke_width=self._settings.default_stroke_width,
            font_size=self._settings.font_size,
        )
        self._viewport: Tuple[float, float] = (
            self._settings.viewport_width,
            self._settings.viewport_height,
        )

        self._scene: Optional[Scene] = None
        self._state = InteractionState.IDLE
        self._tool: ToolBase = create_tool(ToolType.SELECT)
        self._selected: Tuple[str, ...] = ()
        self._crop_region: Optional[QRectF] = None

        self._generation = 0
        self._pending: Optional[_PendingRaster] = None

        self._editing_text: Optional[TextAnnotation] = None
        self._editing_is_new = False
        self._editing_placeholder = False
        self._editing_original = ""

    # ─── Properties ───────────────────────────────────────────────────────

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def scene(self) -> Optional[Scene]:
        return self._scene

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def tool(self) -> ToolBase:
        return self._tool

    @property
    def tool_type(self) -> ToolType:
        return self._tool.tool_type

    @property
    def style(self) -> AnnotationStyle:
        return self._style

    @property
    def history(self) -> HistoryManager:
        return self._history

    @property
    def compositor(self) -> PixelationCompositor:
        return self._compositor

    @property
    def selected_ids(self) -> Tuple[str, ...]:
        return self._selected

    @property
    def crop_region(self) -> Optional[QRectF]:
        return QRectF(self._crop_region) if self._crop_region is not None else None

    @property
    def editing_text(self) -> Optional[TextAnnotation]:
        return self._editing_text

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_pending(self) -> bool:
        """True while a raster is being established."""
        return self._pending is not None

    @property
    def viewport(self) -> Tuple[float, float]:
        return self._viewport

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    # ─── Session ──────────────────────────────────────────────────────────

    def load_image(self, data: bytes) -> None:
        """
        Start a session from encoded image bytes.

        Raises:
            DecodeError: the bytes are not a readable image.
        """
        self._start_session(BackgroundRaster.from_bytes(data))

    def load_qimage(self, image: QImage) -> None:
        """Start a session from an already decoded image."""
        self._start_session(BackgroundRaster.from_image(image))

    def _start_session(self, raster: BackgroundRaster) -> None:
        self._logger.info(f"Starting session with {raster}")
        self._scene = None
        self._selected = ()
        self._crop_region = None
        self._editing_text = None
        self._set_state(InteractionState.IDLE)
        self._tool = create_tool(ToolType.SELECT)
        self.tool_changed.emit(ToolType.SELECT)

        def on_ready(layout: RasterLayout) -> None:
            self._scene = Scene(raster, layout)
            self._history.reset(HistoryEntry.capture(self._scene))
            self.raster_changed.emit(raster)
            self.scene_changed.emit()
            self._emit_history()

        self._request_raster(raster, on_ready, "load", cancellable=False)

    def set_viewport(self, width: float, height: float) -> None:
        """
        Resize the canvas.

        The raster is re-fitted and every object is remapped into the new
        canvas space. No history entry is recorded.
        """
        if width <= 0 or height <= 0:
            self._logger.debug(f"Ignoring empty viewport {width}x{height}")
            return

        self._viewport = (float(width), float(height))
        if self._scene is None or self._pending is not None:
            return

        scene = self._scene
        old_layout = scene.layout
        new_layout = self._fit(scene.background)
        if new_layout == old_layout:
            return

        remap = FractionalRemap(
            source=old_layout.display_rect(scene.background),
            target=new_layout.display_rect(scene.background),
        )
        # In place, together with the tool anchors, so a gesture in progress keeps its object
        for obj in scene.objects_in_z_order():
            obj.remap(remap)
        self._tool.on_remap(remap)
        scene.set_layout(new_layout)

        if self._crop_region is not None:
            top_left = remap.map_point(self._crop_region.topLeft())
            self._crop_region = QRectF(
                top_left.x(),
                top_left.y(),
                remap.map_length(self._crop_region.width()),
                remap.map_length(self._crop_region.height()),
            )
            self.crop_region_changed.emit(self.crop_region)

        self._refresh_all_pixelation()
        self.scene_changed.emit()

    # ─── Tools and style ──────────────────────────────────────────────────

    def set_tool(self, tool_type: ToolType) -> bool:
        """
        Activate a tool.

        Refused while a gesture or a pending crop is in progress. Finishes
        any text edit and drops a cancellable raster request first.
        """
        if self._state in (InteractionState.DRAWING, InteractionState.CROPPING):
            self._logger.warning(
                f"Cannot switch to {tool_type.value} while {self._state.value}"
            )
            return False

        if self._state == InteractionState.EDITING_TEXT:
            self.finish_text_edit()

        self._cancel_pending()

        self._tool.on_deactivate(self)
        self._tool = create_tool(tool_type)
        self._logger.debug(f"Tool changed to {tool_type.value}")
        self.tool_changed.emit(tool_type)
        return True

    def set_style(
        self,
        color: Optional[QColor] = None,
        stroke_width: Optional[float] = None,
        font_size: Optional[float] = None,
    ) -> None:
        """Update the style used for new annotations."""
        if color is not None:
            self._style.stroke_color = QColor(color)
        if stroke_width is not None:
            self._style.stroke_width = float(stroke_width)
        if font_size is not None:
            self._style.font_size = float(font_size)

    # ─── Pointer events ───────────────────────────────────────────────────

    def pointer_down(self, pos: QPointF) -> bool:
        if not self._accepts_input():
            return False

        if self._state == InteractionState.EDITING_TEXT:
            # The click only ends the edit
            self.finish_text_edit()
            return True

        if self._state == InteractionState.DRAWING:
            self._logger.debug("Ignoring pointer down during a gesture")
            return False

        self._tool.on_pointer_down(QPointF(pos), self)
        return True

    def pointer_move(self, pos: QPointF) -> bool:
        if not self._accepts_input() or self._state == InteractionState.EDITING_TEXT:
            return False
        self._tool.on_pointer_move(QPointF(pos), self)
        return True

    def pointer_up(self, pos: QPointF) -> bool:
        if not self._accepts_input() or self._state == InteractionState.EDITING_TEXT:
            return False
        self._tool.on_pointer_up(QPointF(pos), self)
        return True

    def _accepts_input(self) -> bool:
        return self._scene is not None and self._pending is None

    # ─── Helpers used by tools ────────────────────────────────────────────

    def set_state(self, state: InteractionState) -> None:
        self._set_state(state)

    def select(self, ids: Iterable[str]) -> None:
        selected = tuple(i for i in ids if self._scene is not None and i in self._scene)
        if selected != self._selected:
            self._selected = selected
            self.selection_changed.emit()

    def selected_objects(self) -> List[Annotation]:
        if self._scene is None:
            return []
        return [obj for obj in self._scene.objects_in_z_order() if obj.id in self._selected]

    def hit_test(self, pos: QPointF) -> Optional[Annotation]:
        """Topmost selectable object under the point."""
        if self._scene is None:
            return None
        for obj in reversed(self._scene.objects_in_z_order()):
            if obj.selectable and obj.hit_test(pos):
                return obj
        return None

    def add_provisional(self, annotation: Annotation) -> None:
        """Insert an object that is not yet part of any history entry."""
        self._scene.add_object(annotation)
        self.scene_changed.emit()

    def discard_provisional(self, annotation: Annotation) -> None:
        self._scene.remove_objects([annotation.id])
        self.select(i for i in self._selected if i != annotation.id)
        self.scene_changed.emit()

    def refresh_pixelation(self, annotation: Annotation) -> None:
        if isinstance(annotation, PixelateZone) and self._scene is not None:
            self._compositor.refresh(annotation, self._scene.background, self._scene.layout)

    def notify_scene_changed(self) -> None:
        self.scene_changed.emit()

    def set_crop_region(self, region: Optional[QRectF]) -> None:
        self._crop_region = QRectF(region) if region is not None else None
        self.crop_region_changed.emit(self.crop_region)

    def commit_snapshot(self, reason: str) -> None:
        """Record the current scene as a new history entry."""
        if not self._invariant(self._scene is not None, f"Snapshot '{reason}' without a scene"):
            return
        self._history.record(HistoryEntry.capture(self._scene))
        self._logger.info(f"Committed {reason} ({len(self._scene)} objects)")
        self.scene_changed.emit()
        self._emit_history()

    # ─── Crop ─────────────────────────────────────────────────────────────

    def apply_crop(self) -> bool:
        """
        Crop to the pending region.

        Returns False when there is nothing to apply or the region turned
        out too small, in which case the crop is treated as cancelled.
        """
        if self._state != InteractionState.CROPPING or self._crop_region is None:
            return False
        if not self._accepts_input():
            return False

        region = self._crop_region
        self.set_crop_region(None)
        self._set_state(InteractionState.IDLE)
        self.set_tool(ToolType.SELECT)

        try:
            result = self._crop_engine.apply_crop(region, self._scene)
        except DegenerateGeometryError as exc:
            self._logger.debug(f"Crop discarded: {exc}")
            return False

        self._request_raster(
            result.raster,
            lambda layout: self._finish_crop(result, layout),
            "crop",
        )
        return True

    def _finish_crop(self, result: CropResult, layout: RasterLayout) -> None:
        objects = result.remap_into(layout)
        self._scene.replace_background(result.raster, layout)
        self._scene.replace_objects(objects)
        self._refresh_all_pixelation()
        self.select([])
        self.raster_changed.emit(result.raster)
        self.commit_snapshot("crop")

    def cancel_crop(self) -> bool:
        """Drop the pending crop region, or a crop whose raster is still pending."""
        cancelled = False
        if self._pending is not None and self._pending.reason == "crop":
            self._cancel_pending()
            cancelled = True

        if self._state == InteractionState.CROPPING:
            self.set_crop_region(None)
            self._tool.on_deactivate(self)
            self._set_state(InteractionState.IDLE)
            cancelled = True

        return cancelled

    # ─── History ──────────────────────────────────────────────────────────

    def undo(self) -> bool:
        if not self._prepare_history_step("undo"):
            return False
        return self._restore_entry(self._history.peek_undo(), "undo")

    def redo(self) -> bool:
        if not self._prepare_history_step("redo"):
            return False
        return self._restore_entry(self._history.peek_redo(), "redo")

    def _prepare_history_step(self, label: str) -> bool:
        if not self._accepts_input():
            self._logger.debug(f"Ignoring {label}: no established scene")
            return False
        if self._state == InteractionState.DRAWING:
            self._logger.warning(f"Refusing {label} during a gesture")
            return False
        if self._state == InteractionState.EDITING_TEXT:
            was_new = self._editing_is_new
            before = self._history.current
            self.finish_text_edit()
            if was_new and self._history.current is before:
                # Dropping the placeholder text is the whole step
                self._logger.debug(f"{label.capitalize()} consumed by discarding new text")
                return False
        if self._state == InteractionState.CROPPING:
            self.cancel_crop()
        return True

    def _restore_entry(self, entry: Optional[HistoryEntry], label: str) -> bool:
        if entry is None:
            return False

        try:
            objects = Scene.rebuild_objects(entry.records)
        except SceneCorruptError as exc:
            self._logger.warning(f"Refusing {label}: {exc}")
            return False

        if entry.raster is self._scene.background:
            self._apply_entry(entry, objects, self._scene.layout)
            self._logger.info(f"{label.capitalize()} to entry {self._history.cursor}")
            return True

        # Geometry can only be placed once the raster's layout is known
        self._request_raster(
            entry.raster,
            lambda layout: self._apply_entry(entry, objects, layout),
            label,
        )
        return True

    def _apply_entry(
        self,
        entry: HistoryEntry,
        objects: List[Annotation],
        layout: RasterLayout,
    ) -> None:
        if entry.layout != layout:
            remap = FractionalRemap(
                source=entry.layout.display_rect(entry.raster),
                target=layout.display_rect(entry.raster),
            )
            for obj in objects:
                obj.remap(remap)

        raster_swapped = entry.raster is not self._scene.background
        if raster_swapped:
            self._scene.replace_background(entry.raster, layout)
        else:
            self._scene.set_layout(layout)
        self._scene.replace_objects(objects)
        self._refresh_all_pixelation()
        self._history.move_to(entry)

        self.select(self._selected)
        if raster_swapped:
            self.raster_changed.emit(entry.raster)
        self.scene_changed.emit()
        self._emit_history()

    # ─── Delete / clear ───────────────────────────────────────────────────

    def delete_selected(self) -> bool:
        if not self._accepts_input() or self._state != InteractionState.IDLE:
            return False
        if not self._selected:
            return False

        removed = self._scene.remove_objects(self._selected)
        self.select([])
        if not removed:
            return False
        self.commit_snapshot(f"delete {len(removed)} objects")
        return True

    def clear(self) -> bool:
        """Remove every object; the background stays."""
        if not self._accepts_input() or self._state == InteractionState.DRAWING:
            return False
        if self._state == InteractionState.EDITING_TEXT:
            self.finish_text_edit()
        if self._state == InteractionState.CROPPING:
            self.cancel_crop()
        if len(self._scene) == 0:
            return False

        self._scene.replace_objects([])
        self.select([])
        self.commit_snapshot("clear")
        return True

    # ─── Text editing ─────────────────────────────────────────────────────

    def begin_text_edit(self, text: TextAnnotation, is_new: bool) -> None:
        """
        Put a text object into inline edit.

        New text carries the placeholder until the first typed character.
        The active tool reverts to select.
        """
        self.set_tool(ToolType.SELECT)
        if is_new:
            self._scene.add_object(text)

        self._editing_text = text
        self._editing_is_new = is_new
        self._editing_placeholder = is_new
        self._editing_original = text.text
        self.select([text.id])
        self._set_state(InteractionState.EDITING_TEXT)
        self.scene_changed.emit()

    def insert_text(self, value: str) -> bool:
        text = self._editing_text
        if text is None:
            return False
        if self._editing_placeholder:
            text.text = value
            self._editing_placeholder = False
        else:
            text.text += value
        self.scene_changed.emit()
        return True

    def backspace(self) -> bool:
        text = self._editing_text
        if text is None:
            return False
        if self._editing_placeholder:
            text.text = ""
            self._editing_placeholder = False
        else:
            text.text = text.text[:-1]
        self.scene_changed.emit()
        return True

    def finish_text_edit(self) -> Optional[TextAnnotation]:
        """
        End the inline edit.

        Empty text is removed. New text that stays empty leaves no history
        entry behind.
        """
        text = self._editing_text
        if text is None:
            return None

        is_new = self._editing_is_new
        untouched = self._editing_placeholder
        self._editing_text = None
        self._editing_placeholder = False
        self._set_state(InteractionState.IDLE)

        if untouched or not text.text.strip():
            self._scene.remove_objects([text.id])
            self.select([])
            if is_new:
                self._logger.debug("Discarded empty text")
                self.scene_changed.emit()
            else:
                self.commit_snapshot("delete text")
            self.text_edit_finished.emit(None)
            return None

        if is_new:
            self.commit_snapshot("add text")
        elif text.text != self._editing_original:
            self.commit_snapshot("edit text")
        self.text_edit_finished.emit(text)
        return text

    # ─── Keyboard ─────────────────────────────────────────────────────────

    def on_key_press(
        self,
        key: int,
        modifiers: Qt.KeyboardModifier = Qt.KeyboardModifier.NoModifier,
        text: str = "",
    ) -> bool:
        """
        Handle a key press.

        Returns True if the key was consumed.
        """
        ctrl = bool(modifiers & Qt.KeyboardModifier.ControlModifier)
        shift = bool(modifiers & Qt.KeyboardModifier.ShiftModifier)

        if ctrl:
            if key == Qt.Key.Key_Z:
                return self.redo() if shift else self.undo()
            if key == Qt.Key.Key_Y:
                return self.redo()
            return False

        if self._state == InteractionState.EDITING_TEXT:
            return self._text_key(key, shift, text)

        if key in (Qt.Key.Key_Delete, Qt.Key.Key_Backspace):
            return self.delete_selected()

        if key == Qt.Key.Key_Escape:
            if self._state == InteractionState.CROPPING or self._pending is not None:
                return self.cancel_crop()
            if self._selected:
                self.select([])
                return True
            return False

        if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            return self.apply_crop()

        if key in TOOL_SHORTCUTS and not modifiers & Qt.KeyboardModifier.AltModifier:
            return self.set_tool(TOOL_SHORTCUTS[key])

        return False

    def _text_key(self, key: int, shift: bool, text: str) -> bool:
        if key == Qt.Key.Key_Escape:
            self.finish_text_edit()
            return True

        if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            if shift:
                return self.insert_text("\n")
            self.finish_text_edit()
            return True

        if key in (Qt.Key.Key_Backspace, Qt.Key.Key_Delete):
            return self.backspace()

        if text and text.isprintable():
            return self.insert_text(text)

        return False

    # ─── Export ───────────────────────────────────────────────────────────

    def export_image(self, multiplier: Optional[float] = None) -> QImage:
        """Flatten the scene at native resolution times the multiplier."""
        return self._exporter.flatten(self._export_scene(), self._export_multiplier(multiplier))

    def export_png(self, multiplier: Optional[float] = None) -> bytes:
        return self._exporter.flatten_png(self._export_scene(), self._export_multiplier(multiplier))

    def _export_scene(self) -> Scene:
        if self._scene is None:
            raise EngineError("No image loaded")
        return self._scene

    def _export_multiplier(self, multiplier: Optional[float]) -> float:
        return self._settings.export_multiplier if multiplier is None else multiplier

    # ─── Raster requests ──────────────────────────────────────────────────

    def _fit(self, raster: BackgroundRaster) -> RasterLayout:
        width, height = self._viewport
        return fit_layout(
            raster.width,
            raster.height,
            width,
            height,
            self._settings.max_display_scale,
        )

    def _request_raster(
        self,
        raster: BackgroundRaster,
        on_ready: Callable[[RasterLayout], None],
        reason: str,
        cancellable: bool = True,
    ) -> None:
        self._generation += 1
        generation = self._generation
        self._pending = _PendingRaster(generation, raster, on_ready, reason, cancellable)
        self._logger.debug(f"Establishing {raster} for {reason} (generation {generation})")
        self._loader.establish(raster, lambda: self._on_raster_established(generation))

    def _on_raster_established(self, generation: int) -> None:
        if generation != self._generation:
            self._logger.debug(
                f"Discarding stale raster completion (generation {generation}, "
                f"current {self._generation})"
            )
            return

        pending = self._pending
        if not self._invariant(
            pending is not None and pending.generation == generation,
            "Raster established with no pending request",
        ):
            return

        self._pending = None
        pending.on_ready(self._fit(pending.raster))

    def _cancel_pending(self) -> None:
        pending = self._pending
        if pending is None or not pending.cancellable:
            return
        self._generation += 1
        self._pending = None
        self._logger.info(f"Cancelled pending {pending.reason}")

    # ─── Internals ────────────────────────────────────────────────────────

    def _set_state(self, state: InteractionState) -> None:
        if state != self._state:
            self._state = state
            self.state_changed.emit(state)

    def _emit_history(self) -> None:
        self.history_changed.emit(self._history.can_undo(), self._history.can_redo())

    def _refresh_all_pixelation(self) -> None:
        for obj in self._scene.objects_in_z_order():
            self.refresh_pixelation(obj)

    def _invariant(self, condition: bool, message: str) -> bool:
        """Raise in strict mode; otherwise log and let the caller bail out."""
        if condition:
            return True
        if self._settings.strict_invariants:
            raise EngineInvariantError(message)
        self._logger.error(f"Invariant violated: {message}")
        return False

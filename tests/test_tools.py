import pytest
from PySide6.QtCore import QPointF, QRectF, Qt

from snapmark.engine.annotations import (
    TEXT_PLACEHOLDER,
    ArrowAnnotation,
    FreehandAnnotation,
    PixelateZone,
    RectangleAnnotation,
    TextAnnotation,
)
from snapmark.engine.tools import (
    CropTool,
    InteractionState,
    SelectTool,
    ShapeTool,
    ToolType,
    create_tool,
)


def _objects(engine):
    return engine.scene.objects_in_z_order()


def test_create_tool_covers_every_type():
    assert isinstance(create_tool(ToolType.SELECT), SelectTool)
    assert isinstance(create_tool(ToolType.CROP), CropTool)
    for tool_type in (ToolType.ARROW, ToolType.RECTANGLE, ToolType.ELLIPSE, ToolType.PIXELATE):
        tool = create_tool(tool_type)
        assert isinstance(tool, ShapeTool)
        assert tool.tool_type == tool_type


def test_rectangle_drag_normalizes(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (300, 300), (100, 150))

    (rect,) = _objects(engine)
    assert isinstance(rect, RectangleAnnotation)
    assert rect.rect == QRectF(100, 150, 200, 150)
    assert rect.selectable
    assert engine.selected_ids == (rect.id,)
    assert len(engine.history) == 2
    assert engine.state == InteractionState.IDLE


def test_tiny_shape_is_discarded(engine, drag):
    engine.set_tool(ToolType.ELLIPSE)
    drag(engine, (100, 100), (101, 101))

    assert len(engine.scene) == 0
    assert len(engine.history) == 1
    assert engine.state == InteractionState.IDLE


def test_arrow_starts_degenerate_and_follows_pointer(engine):
    engine.set_tool(ToolType.ARROW)
    engine.pointer_down(QPointF(100, 100))

    (arrow,) = _objects(engine)
    assert isinstance(arrow, ArrowAnnotation)
    assert arrow.end == QPointF(101, 101)
    assert not arrow.selectable
    assert engine.hit_test(QPointF(100, 100)) is None

    engine.pointer_move(QPointF(50, 200))
    assert arrow.end == QPointF(50, 200)

    engine.pointer_up(QPointF(100, 100))
    assert len(engine.scene) == 0


def test_tool_switch_refused_mid_gesture(engine):
    engine.set_tool(ToolType.RECTANGLE)
    engine.pointer_down(QPointF(100, 100))

    assert not engine.set_tool(ToolType.ELLIPSE)
    assert engine.tool_type == ToolType.RECTANGLE

    engine.pointer_up(QPointF(200, 200))
    assert engine.set_tool(ToolType.ELLIPSE)


def test_freehand_click_is_discarded_and_drag_commits(engine, drag):
    engine.set_tool(ToolType.FREEHAND)
    engine.pointer_down(QPointF(100, 100))
    engine.pointer_up(QPointF(100, 100))
    assert len(engine.scene) == 0

    drag(engine, (100, 100), (200, 150))
    (path,) = _objects(engine)
    assert isinstance(path, FreehandAnnotation)
    assert len(path.points) == 3
    assert path.selectable


def test_text_is_typed_over_placeholder(engine):
    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(200, 200))

    assert engine.state == InteractionState.EDITING_TEXT
    assert engine.tool_type == ToolType.SELECT
    assert engine.editing_text.text == TEXT_PLACEHOLDER

    engine.on_key_press(Qt.Key.Key_H, text="H")
    engine.on_key_press(Qt.Key.Key_I, text="i")
    engine.on_key_press(Qt.Key.Key_Return, Qt.KeyboardModifier.ShiftModifier)
    engine.on_key_press(Qt.Key.Key_X, text="x")
    engine.on_key_press(Qt.Key.Key_Return)

    (text,) = _objects(engine)
    assert isinstance(text, TextAnnotation)
    assert text.text == "Hi\nx"
    assert engine.state == InteractionState.IDLE
    assert len(engine.history) == 2


def test_untouched_text_is_removed_without_history(engine):
    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(200, 200))
    engine.on_key_press(Qt.Key.Key_Escape)

    assert len(engine.scene) == 0
    assert len(engine.history) == 1


def test_click_while_editing_only_finishes_the_edit(engine):
    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(200, 200))
    engine.on_key_press(Qt.Key.Key_A, text="A")

    engine.pointer_down(QPointF(600, 600))
    engine.pointer_up(QPointF(600, 600))

    assert engine.state == InteractionState.IDLE
    assert len(engine.scene) == 1
    assert len(engine.history) == 2


def test_editing_existing_text_to_empty_deletes_it(engine):
    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(200, 200))
    engine.on_key_press(Qt.Key.Key_A, text="A")
    engine.finish_text_edit()
    (text,) = _objects(engine)

    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(text.bounding_rect.center())
    assert engine.editing_text is text
    engine.on_key_press(Qt.Key.Key_Backspace)
    engine.on_key_press(Qt.Key.Key_Return)

    assert len(engine.scene) == 0
    assert len(engine.history) == 3
    assert engine.undo()
    assert _objects(engine)[0].text == "A"


def test_select_move_commits_once_and_undoes(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))
    engine.set_tool(ToolType.SELECT)
    engine.select([])

    drag(engine, (150, 100), (170, 130))
    (rect,) = _objects(engine)
    assert rect.rect == QRectF(120, 130, 200, 100)
    assert len(engine.history) == 3

    assert engine.undo()
    (rect,) = _objects(engine)
    assert rect.rect == QRectF(100, 100, 200, 100)


def test_click_on_empty_canvas_clears_selection(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))
    engine.set_tool(ToolType.SELECT)

    engine.pointer_down(QPointF(700, 700))
    engine.pointer_up(QPointF(700, 700))
    assert engine.selected_ids == ()
    assert len(engine.history) == 2


def test_handle_drag_resizes_selection(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))
    engine.set_tool(ToolType.SELECT)

    drag(engine, (300, 200), (350, 260))
    (rect,) = _objects(engine)
    assert rect.rect == QRectF(100, 100, 250, 160)


def test_pixelate_zone_gets_a_patch(engine, drag):
    engine.set_tool(ToolType.PIXELATE)
    drag(engine, (100, 100), (180, 140))

    (zone,) = _objects(engine)
    assert isinstance(zone, PixelateZone)
    assert (zone.patch.width(), zone.patch.height()) == (80, 40)


def test_delete_and_clear(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (200, 200))
    assert engine.on_key_press(Qt.Key.Key_Delete)
    assert len(engine.scene) == 0
    assert len(engine.history) == 3

    drag(engine, (100, 100), (200, 200))
    drag(engine, (300, 300), (400, 400))
    assert engine.clear()
    assert len(engine.scene) == 0
    assert not engine.clear()


def test_shortcuts_switch_tools(engine):
    assert engine.on_key_press(Qt.Key.Key_R)
    assert engine.tool_type == ToolType.RECTANGLE
    assert engine.on_key_press(Qt.Key.Key_C)
    assert engine.tool_type == ToolType.CROP
    assert not engine.on_key_press(Qt.Key.Key_Q)


def test_escape_cancels_crop_region(engine, drag):
    engine.set_tool(ToolType.CROP)
    drag(engine, (100, 100), (300, 300))
    assert engine.state == InteractionState.CROPPING
    assert engine.crop_region == QRectF(100, 100, 200, 200)
    assert not engine.set_tool(ToolType.ARROW)

    assert engine.on_key_press(Qt.Key.Key_Escape)
    assert engine.state == InteractionState.IDLE
    assert engine.crop_region is None


def test_small_crop_region_is_dropped_on_release(engine, drag):
    engine.set_tool(ToolType.CROP)
    drag(engine, (100, 100), (105, 300))
    assert engine.state == InteractionState.IDLE
    assert engine.crop_region is None


def test_viewport_resize_remaps_without_history(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))
    drag(engine, (400, 400), (500, 500))

    engine.set_viewport(500, 400)
    first, second = _objects(engine)
    assert engine.scene.layout.scale == pytest.approx(0.5)
    assert first.rect == QRectF(50, 50, 100, 50)
    assert first.stroke_width == pytest.approx(2.0)
    assert len(engine.history) == 3

    assert engine.undo()
    (first,) = _objects(engine)
    assert first.rect == QRectF(50, 50, 100, 50)


def test_empty_viewport_is_ignored(engine):
    layout = engine.scene.layout
    engine.set_viewport(0, 400)
    assert engine.scene.layout == layout


def test_viewport_resize_mid_drag_keeps_the_shape(engine):
    engine.set_tool(ToolType.RECTANGLE)
    engine.pointer_down(QPointF(100, 100))
    engine.pointer_move(QPointF(200, 200))

    engine.set_viewport(500, 400)
    (rect,) = _objects(engine)
    assert rect.rect == QRectF(50, 50, 50, 50)

    engine.pointer_move(QPointF(100, 100))
    engine.pointer_up(QPointF(100, 100))
    (rect,) = _objects(engine)
    assert rect.rect == QRectF(50, 50, 50, 50)
    assert engine.state == InteractionState.IDLE
    assert len(engine.history) == 2


def test_viewport_resize_mid_crop_drag_keeps_the_anchor(engine):
    engine.set_tool(ToolType.CROP)
    engine.pointer_down(QPointF(100, 100))
    engine.pointer_move(QPointF(300, 300))

    engine.set_viewport(500, 400)
    assert engine.crop_region == QRectF(50, 50, 100, 100)

    engine.pointer_move(QPointF(200, 200))
    engine.pointer_up(QPointF(200, 200))
    assert engine.crop_region == QRectF(50, 50, 150, 150)


def test_viewport_resize_mid_move_keeps_the_offset(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))
    engine.set_tool(ToolType.SELECT)
    engine.select([])

    engine.pointer_down(QPointF(150, 100))
    engine.set_viewport(500, 400)
    engine.pointer_move(QPointF(85, 60))
    engine.pointer_up(QPointF(85, 60))

    (rect,) = _objects(engine)
    assert rect.rect == QRectF(60, 60, 100, 50)
    assert len(engine.history) == 3


def test_undo_while_typing_new_text_only_drops_the_text(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))

    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(600, 600))
    assert engine.state == InteractionState.EDITING_TEXT

    assert not engine.on_key_press(Qt.Key.Key_Z, Qt.KeyboardModifier.ControlModifier)
    (rect,) = _objects(engine)
    assert isinstance(rect, RectangleAnnotation)
    assert engine.state == InteractionState.IDLE
    assert engine.editing_text is None
    assert engine.history.cursor == 1
    assert len(engine.history) == 2


def test_undo_after_typing_new_text_undoes_the_text(engine, drag):
    engine.set_tool(ToolType.RECTANGLE)
    drag(engine, (100, 100), (300, 200))

    engine.set_tool(ToolType.TEXT)
    engine.pointer_down(QPointF(600, 600))
    engine.on_key_press(Qt.Key.Key_A, text="A")

    assert engine.on_key_press(Qt.Key.Key_Z, Qt.KeyboardModifier.ControlModifier)
    (rect,) = _objects(engine)
    assert isinstance(rect, RectangleAnnotation)
    assert engine.history.cursor == 1
    assert len(engine.history) == 3

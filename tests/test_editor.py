from PySide6.QtCore import QPointF
from PySide6.QtTest import QTest

from snapmark.app import main
from snapmark.editor.editor_widget import EditorWidget
from snapmark.engine.layout import decode_image
from snapmark.engine.tools import ToolType
from snapmark.services.config_service import ConfigService
from snapmark.ui.main_window import MainWindow


def _wait_for_scene(engine, attempts=50):
    for _ in range(attempts):
        if engine.scene is not None and not engine.is_pending:
            return
        QTest.qWait(10)


def test_editor_loads_annotates_and_saves(tmp_path, solid_image):
    widget = EditorWidget(ConfigService(tmp_path / "config.json"))
    widget.resize(900, 700)
    widget.set_image(solid_image(320, 240))
    _wait_for_scene(widget.engine)

    engine = widget.engine
    assert engine.scene is not None
    assert (engine.scene.background.width, engine.scene.background.height) == (320, 240)

    display = engine.scene.layout.display_rect(engine.scene.background)
    engine.set_tool(ToolType.RECTANGLE)
    engine.pointer_down(display.topLeft() + QPointF(10, 10))
    engine.pointer_up(display.topLeft() + QPointF(60, 60))
    assert len(engine.scene) == 1

    saved = []
    widget.saved.connect(saved.append)
    target = tmp_path / "out" / "shot.png"
    assert widget.save_to(target)
    assert saved == [str(target)]

    image = decode_image(target.read_bytes())
    assert (image.width(), image.height()) == (320, 240)


def test_save_without_image_fails(tmp_path):
    widget = EditorWidget(ConfigService(tmp_path / "config.json"))
    assert not widget.save_to(tmp_path / "nothing.png")
    assert not (tmp_path / "nothing.png").exists()


def test_main_window_hosts_the_editor(tmp_path, solid_image):
    window = MainWindow(ConfigService(tmp_path / "config.json"))
    window.load_image_in_editor(solid_image(100, 80))
    _wait_for_scene(window.editor.engine)

    assert window.editor.engine.scene is not None


def test_cli_rejects_missing_and_undecodable_images(tmp_path, monkeypatch):
    monkeypatch.setattr("snapmark.services.logging_service._logging_initialized", True)

    assert main([str(tmp_path / "missing.png")]) == 1

    garbage = tmp_path / "garbage.png"
    garbage.write_bytes(b"not an image")
    assert main([str(garbage)]) == 1


def test_save_as_writes_the_chosen_file(tmp_path, solid_image, monkeypatch):
    target = tmp_path / "chosen.png"
    monkeypatch.setattr(
        "snapmark.editor.editor_widget.QFileDialog.getSaveFileName",
        lambda *args, **kwargs: (str(target), ""),
    )
    widget = EditorWidget(ConfigService(tmp_path / "config.json"))
    widget.set_image(solid_image(120, 90))
    _wait_for_scene(widget.engine)

    assert widget.save_as()
    assert decode_image(target.read_bytes()).width() == 120


def test_save_as_cancelled_writes_nothing(tmp_path, solid_image, monkeypatch):
    monkeypatch.setattr(
        "snapmark.editor.editor_widget.QFileDialog.getSaveFileName",
        lambda *args, **kwargs: ("", ""),
    )
    widget = EditorWidget(ConfigService(tmp_path / "config.json"))
    widget.set_image(solid_image(120, 90))
    _wait_for_scene(widget.engine)

    assert not widget.save_as()
    assert list(tmp_path.glob("*.png")) == []


def _menu_action(window, text):
    for menu_action in window.menuBar().actions():
        for action in menu_action.menu().actions():
            if action.text() == text:
                return action
    raise LookupError(text)


def test_main_window_save_prompts_without_output_path(tmp_path, solid_image, monkeypatch):
    calls = []
    monkeypatch.setattr(EditorWidget, "save_as", lambda self: calls.append(self) or True)
    window = MainWindow(ConfigService(tmp_path / "config.json"))
    window.load_image_in_editor(solid_image(100, 80))
    _wait_for_scene(window.editor.engine)

    _menu_action(window, "&Save").trigger()
    assert calls == [window.editor]


def test_main_window_save_uses_output_path(tmp_path, solid_image):
    target = tmp_path / "fixed.png"
    window = MainWindow(ConfigService(tmp_path / "config.json"), output_path=target)
    window.load_image_in_editor(solid_image(100, 80))
    _wait_for_scene(window.editor.engine)

    _menu_action(window, "&Save").trigger()
    assert target.exists()

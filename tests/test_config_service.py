import json

from snapmark.engine.settings import EngineSettings
from snapmark.services.config_service import DEFAULT_CONFIG, ConfigService


def test_missing_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "snapmark" / "config.json"
    config = ConfigService(path)

    assert path.exists()
    assert config.default_color == DEFAULT_CONFIG["default_color"]
    assert config.history_limit == 100
    assert config.viewport == {"width": 1000, "height": 800}


def test_corrupt_file_is_recreated(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    config = ConfigService(path)
    assert config.pixelate_block_size == 10.0
    assert json.loads(path.read_text(encoding="utf-8"))["min_crop_size"] == 10


def test_nested_values_merge_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"viewport": {"width": 640}, "font_size": 18}), encoding="utf-8")

    config = ConfigService(path)
    assert config.viewport == {"width": 640, "height": 800}
    assert config.font_size == 18.0


def test_set_and_save_round_trip(tmp_path):
    path = tmp_path / "config.json"
    config = ConfigService(path)
    config.set("history_limit", 5)
    config.save()

    assert ConfigService(path).history_limit == 5


def test_engine_settings_from_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({
            "viewport": {"width": 1280, "height": 720},
            "pixelate_block_size": 16,
            "strict_invariants": True,
        }),
        encoding="utf-8",
    )

    settings = EngineSettings.from_config(ConfigService(path))
    assert settings.viewport_width == 1280.0
    assert settings.viewport_height == 720.0
    assert settings.block_size == 16.0
    assert settings.strict_invariants
    assert settings.min_shape_size == 3.0

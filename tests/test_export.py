import pytest
from PySide6.QtGui import QColor

from snapmark.engine.engine import AnnotationEngine
from snapmark.engine.errors import EngineError
from snapmark.engine.layout import decode_image
from snapmark.engine.tools import ToolType


@pytest.fixture
def small_engine(settings, solid_image):
    engine = AnnotationEngine(settings)
    engine.load_qimage(solid_image(200, 100, "#ffffff"))
    return engine


def _is_red(color: QColor) -> bool:
    return color.red() > 200 and color.green() < 60 and color.blue() < 60


def test_export_is_native_size_times_multiplier(small_engine):
    assert small_engine.scene.layout.offset_x == pytest.approx(400.0)
    assert small_engine.scene.layout.offset_y == pytest.approx(350.0)

    image = small_engine.export_image()
    assert (image.width(), image.height()) == (200, 100)

    doubled = small_engine.export_image(2.0)
    assert (doubled.width(), doubled.height()) == (400, 200)


def test_annotations_land_on_native_pixels(small_engine, drag):
    small_engine.set_style(color=QColor("#ff0000"), stroke_width=4.0)
    small_engine.set_tool(ToolType.RECTANGLE)
    drag(small_engine, (420, 370), (520, 420))

    image = small_engine.export_image()
    assert _is_red(image.pixelColor(20, 45))
    assert image.pixelColor(60, 45) == QColor("#ffffff")

    doubled = small_engine.export_image(2.0)
    assert _is_red(doubled.pixelColor(40, 90))


def test_export_png_decodes(small_engine):
    image = decode_image(small_engine.export_png())
    assert (image.width(), image.height()) == (200, 100)


def test_export_rejects_bad_multiplier(small_engine):
    with pytest.raises(ValueError):
        small_engine.export_image(0)


def test_export_without_image_raises(settings):
    with pytest.raises(EngineError):
        AnnotationEngine(settings).export_image()

import os

# Qt must pick the headless platform before PySide6 creates the application
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import numpy as np
import pytest
from PySide6.QtCore import QPointF
from PySide6.QtGui import QColor, QImage
from PySide6.QtWidgets import QApplication

from snapmark.engine.engine import AnnotationEngine
from snapmark.engine.pixelate import array_to_qimage
from snapmark.engine.settings import EngineSettings


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


def _solid_image(width: int, height: int, color: str = "#808080") -> QImage:
    image = QImage(width, height, QImage.Format.Format_ARGB32)
    image.fill(QColor(color))
    return image


@pytest.fixture
def solid_image():
    return _solid_image


@pytest.fixture
def halves_image():
    """Left half red, right half blue."""
    def make(width: int, height: int) -> QImage:
        arr = np.zeros((height, width, 4), dtype=np.uint8)
        arr[:, : width // 2] = (255, 0, 0, 255)
        arr[:, width // 2:] = (0, 0, 255, 255)
        return array_to_qimage(arr)
    return make


@pytest.fixture
def settings():
    return EngineSettings(viewport_width=1000, viewport_height=800)


@pytest.fixture
def engine(settings):
    engine = AnnotationEngine(settings)
    engine.load_qimage(_solid_image(1000, 800))
    return engine


@pytest.fixture
def drag():
    """Press at start, move through a midpoint and release at end."""
    def perform(engine, start, end):
        start = QPointF(*start)
        end = QPointF(*end)
        engine.pointer_down(start)
        engine.pointer_move((start + end) / 2)
        engine.pointer_move(end)
        engine.pointer_up(end)
    return perform


class ManualRasterLoader:
    """Collects establish callbacks so tests decide when they complete."""

    def __init__(self):
        self.callbacks = []

    def establish(self, raster, on_done):
        self.callbacks.append(on_done)


@pytest.fixture
def manual_loader():
    return ManualRasterLoader()

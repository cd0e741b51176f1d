import pytest
from PySide6.QtCore import QRect, QRectF

from snapmark.engine.errors import DecodeError
from snapmark.engine.layout import (
    BackgroundRaster,
    RasterLayout,
    decode_image,
    encode_image,
    fit_layout,
)


def test_fit_layout_exact_fit():
    layout = fit_layout(1000, 800, 1000, 800)
    assert layout == RasterLayout(scale=1.0, offset_x=0.0, offset_y=0.0)


def test_fit_layout_shrinks_and_centers():
    layout = fit_layout(2000, 1000, 1000, 800)
    assert layout.scale == pytest.approx(0.5)
    assert layout.offset_x == pytest.approx(0.0)
    assert layout.offset_y == pytest.approx(150.0)


def test_fit_layout_never_enlarges_past_max_scale():
    layout = fit_layout(100, 100, 1000, 800)
    assert layout.scale == pytest.approx(1.0)
    assert (layout.offset_x, layout.offset_y) == (450.0, 350.0)

    enlarged = fit_layout(100, 100, 1000, 800, max_scale=4.0)
    assert enlarged.scale == pytest.approx(4.0)


def test_fit_layout_rejects_empty_raster():
    with pytest.raises(ValueError):
        fit_layout(0, 10, 1000, 800)


def test_coordinate_conversions_are_inverse():
    layout = RasterLayout(scale=0.4, offset_x=25.0, offset_y=60.0)
    canvas = QRectF(45.0, 80.0, 120.0, 40.0)

    native = layout.canvas_to_native(canvas)
    assert native.x() == pytest.approx(50.0)
    assert native.y() == pytest.approx(50.0)
    assert native.width() == pytest.approx(300.0)
    assert native.height() == pytest.approx(100.0)

    back = layout.native_to_canvas(native)
    assert back.x() == pytest.approx(canvas.x())
    assert back.width() == pytest.approx(canvas.width())


def test_decode_rejects_garbage():
    with pytest.raises(DecodeError):
        decode_image(b"definitely not an image")
    with pytest.raises(DecodeError):
        BackgroundRaster.from_bytes(b"")


def test_from_bytes_keeps_dimensions(solid_image):
    data = encode_image(solid_image(64, 32))
    raster = BackgroundRaster.from_bytes(data)
    assert (raster.width, raster.height) == (64, 32)
    assert raster.encoded == data
    assert raster.parent is None


def test_rasters_compare_by_identity(solid_image):
    data = encode_image(solid_image(8, 8))
    assert BackgroundRaster.from_bytes(data) != BackgroundRaster.from_bytes(data)


def test_snap_to_pixels_rounds_and_clamps(solid_image):
    raster = BackgroundRaster.from_image(solid_image(100, 80))
    snapped = raster.snap_to_pixels(QRectF(-5.0, 10.4, 200.0, 20.6))
    assert snapped == QRect(0, 10, 100, 21)


def test_extract_records_lineage(solid_image):
    root = BackgroundRaster.from_image(solid_image(400, 300))
    child = root.extract(QRect(100, 50, 200, 200))
    grandchild = child.extract(QRect(10, 20, 50, 50))

    assert (child.width, child.height) == (200, 200)
    assert child.parent is root
    assert grandchild.root is root
    assert grandchild.root_origin == (110, 70)
    assert root.root_origin == (0, 0)

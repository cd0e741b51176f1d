import numpy as np
import pytest
from PySide6.QtCore import QRect, QRectF

from snapmark.engine.annotations import PixelateZone
from snapmark.engine.layout import BackgroundRaster, RasterLayout
from snapmark.engine.pixelate import PixelationCompositor, array_to_qimage, qimage_to_array

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)


def _colors(arr):
    return {tuple(int(v) for v in px) for px in arr.reshape(-1, 4)}


def _assert_flat_blocks(arr, block):
    height, width = arr.shape[:2]
    for top in range(0, height, block):
        for left in range(0, width, block):
            cell = arr[top:top + block, left:left + block]
            assert len(_colors(cell)) == 1


def test_grid_size_rounds_up():
    compositor = PixelationCompositor(10)
    assert compositor.grid_size(100) == 10
    assert compositor.grid_size(101) == 11
    assert compositor.grid_size(3) == 1
    assert compositor.grid_size(0) == 1


def test_block_size_must_be_positive():
    with pytest.raises(ValueError):
        PixelationCompositor(0)


def test_two_halves_give_only_flat_red_and_blue_blocks(halves_image):
    raster = BackgroundRaster.from_image(halves_image(200, 100))
    zone = PixelateZone(QRectF(50, 0, 100, 40))

    patch = PixelationCompositor(10).render(zone, raster, RasterLayout(scale=1.0))
    arr = qimage_to_array(patch)

    assert arr.shape == (40, 100, 4)
    assert _colors(arr) == {RED, BLUE}
    _assert_flat_blocks(arr, 10)


def test_gradient_gives_one_color_per_block():
    height, width = 40, 60
    arr = np.zeros((height, width, 4), dtype=np.uint8)
    arr[..., 0] = np.arange(width, dtype=np.uint8)[None, :] * 4
    arr[..., 1] = np.arange(height, dtype=np.uint8)[:, None] * 6
    arr[..., 2] = 128
    arr[..., 3] = 255
    raster = BackgroundRaster.from_image(array_to_qimage(arr))

    compositor = PixelationCompositor(10)
    zone = PixelateZone(QRectF(0, 0, width, height))
    patch = qimage_to_array(compositor.render(zone, raster, RasterLayout(scale=1.0)))

    grid = compositor.grid_size(width) * compositor.grid_size(height)
    assert len(_colors(patch)) == grid
    _assert_flat_blocks(patch, 10)


def test_zone_smaller_than_block_is_one_averaged_block(halves_image):
    raster = BackgroundRaster.from_image(halves_image(20, 20))
    zone = PixelateZone(QRectF(8, 4, 4, 3))

    patch = PixelationCompositor(10).render(zone, raster, RasterLayout(scale=1.0))
    arr = qimage_to_array(patch)

    assert arr.shape == (3, 4, 4)
    assert len(_colors(arr)) == 1


def test_block_count_follows_canvas_size_not_raster_resolution(halves_image):
    raster = BackgroundRaster.from_image(halves_image(400, 200))
    layout = RasterLayout(scale=0.5)
    zone = PixelateZone(QRectF(0, 0, 50, 50))

    patch = PixelationCompositor(10).render(zone, raster, layout)
    arr = qimage_to_array(patch)

    assert arr.shape == (50, 50, 4)
    _assert_flat_blocks(arr, 10)


def test_pixelation_samples_the_original_capture(halves_image):
    root = BackgroundRaster.from_image(halves_image(200, 100))
    cropped = root.extract(QRect(100, 0, 100, 100))
    zone = PixelateZone(QRectF(0, 0, 50, 50))

    patch = PixelationCompositor(10).render(zone, cropped, RasterLayout(scale=1.0))
    assert _colors(qimage_to_array(patch)) == {BLUE}


def test_refresh_is_idempotent_after_resize_and_back(halves_image):
    raster = BackgroundRaster.from_image(halves_image(200, 100))
    layout = RasterLayout(scale=1.0)
    compositor = PixelationCompositor(10)
    zone = PixelateZone(QRectF(30, 10, 120, 60))

    first = qimage_to_array(compositor.refresh(zone, raster, layout))

    zone.rect = QRectF(30, 10, 75, 45)
    compositor.refresh(zone, raster, layout)
    zone.rect = QRectF(30, 10, 120, 60)
    second = qimage_to_array(compositor.refresh(zone, raster, layout))

    assert np.array_equal(first, second)


def test_refresh_reuses_cached_patch(halves_image):
    raster = BackgroundRaster.from_image(halves_image(100, 100))
    layout = RasterLayout(scale=1.0)
    compositor = PixelationCompositor(10)
    zone = PixelateZone(QRectF(0, 0, 40, 40))

    patch = compositor.refresh(zone, raster, layout)
    assert compositor.refresh(zone, raster, layout) is patch

    zone.move_by(5, 0)
    assert compositor.refresh(zone, raster, layout) is not patch


def test_zone_outside_the_raster_still_renders(halves_image):
    raster = BackgroundRaster.from_image(halves_image(50, 50))
    zone = PixelateZone(QRectF(40, 40, 30, 30))

    patch = PixelationCompositor(10).render(zone, raster, RasterLayout(scale=1.0))
    assert (patch.width(), patch.height()) == (30, 30)

"""rasterizer.py のテスト。"""

import numpy as np
import pytest

from emoji_mosaic.domain.image_model import ConversionOptions
from emoji_mosaic.infrastructure.rasterizer import (
    MAX_SAMPLES,
    Rasterizer,
    lanczos3,
    lanczos3_batch,
    sample_bilinear,
    sample_lanczos,
)


def _solid(h: int, w: int, rgb: tuple[int, int, int], alpha: int = 255) -> np.ndarray:
    rgba = np.empty((h, w, 4), dtype=np.uint8)
    rgba[:, :, :3] = rgb
    rgba[:, :, 3] = alpha
    return rgba


class TestLanczosKernel:
    def test_one_at_zero(self) -> None:
        assert lanczos3(0.0) == 1.0

    def test_zero_outside_support(self) -> None:
        for x in (3.0, 3.0001, 4.5, 10.0, -3.5, -100.0):
            assert lanczos3(x) == 0.0

    def test_zero_at_integers(self) -> None:
        for x in (1.0, 2.0, -1.0, -2.0):
            assert abs(lanczos3(x)) < 1e-15

    def test_symmetric(self) -> None:
        for x in (0.3, 1.2, 2.7):
            assert lanczos3(x) == pytest.approx(lanczos3(-x))

    def test_batch_matches_scalar(self) -> None:
        xs = np.linspace(-4.0, 4.0, 81)
        expected = np.array([lanczos3(float(x)) for x in xs])
        np.testing.assert_allclose(lanczos3_batch(xs), expected, atol=1e-12)
        assert lanczos3_batch(np.array([0.0]))[0] == 1.0


class TestSampling:
    def test_constant_image(self) -> None:
        image = np.full((6, 6, 3), 0.25)
        xs = np.array([0.1, 2.5, 5.9])
        ys = np.array([0.5, 3.3, 5.0])
        np.testing.assert_allclose(sample_lanczos(image, xs, ys), 0.25, atol=1e-12)
        np.testing.assert_allclose(sample_bilinear(image, xs, ys), 0.25, atol=1e-12)

    def test_pixel_center_exact(self) -> None:
        rng = np.random.default_rng(3)
        image = rng.random((5, 7, 3))
        xs = np.array([2.5])
        ys = np.array([3.5])
        np.testing.assert_allclose(sample_lanczos(image, xs, ys)[0], image[3, 2], atol=1e-12)
        np.testing.assert_allclose(sample_bilinear(image, xs, ys)[0], image[3, 2], atol=1e-12)

    def test_bilinear_midpoint(self) -> None:
        image = np.zeros((1, 2, 1))
        image[0, 1, 0] = 1.0
        out = sample_bilinear(image, np.array([1.0]), np.array([0.5]))
        assert out[0, 0] == pytest.approx(0.5)


class TestRasterizer:
    def test_invalid_samples(self) -> None:
        with pytest.raises(ValueError):
            Rasterizer(samples=0)
        with pytest.raises(ValueError):
            Rasterizer(samples=MAX_SAMPLES + 1)

    def test_solid_color_preserved(self) -> None:
        raster = Rasterizer().rasterize(_solid(40, 60, (200, 30, 90)), 6, 4)
        assert raster.srgb.shape == (4, 6, 3)
        assert raster.linear.shape == (4, 6, 3)
        np.testing.assert_array_equal(raster.srgb, np.broadcast_to((200, 30, 90), (4, 6, 3)))
        np.testing.assert_allclose(raster.coverage, 1.0)

    def test_transparent_composited_on_white(self) -> None:
        raster = Rasterizer().rasterize(_solid(10, 10, (0, 0, 0), alpha=0), 2, 2)
        assert np.all(raster.srgb == 255)
        np.testing.assert_allclose(raster.coverage, 0.0, atol=1e-12)

    def test_half_alpha_mixed_in_linear_space(self) -> None:
        # 黒 50% を白に合成 → リニア 0.5 → sRGB ≈ 188
        raster = Rasterizer(lanczos=False).rasterize(_solid(8, 8, (0, 0, 0), alpha=128), 1, 1)
        value = int(raster.srgb[0, 0, 0])
        assert 186 <= value <= 189

    def test_halves_split(self) -> None:
        rgba = _solid(20, 40, (255, 0, 0))
        rgba[:, 20:, :3] = (0, 0, 255)
        raster = Rasterizer().rasterize(rgba, 2, 1)
        assert raster.srgb[0, 0, 0] > 200 and raster.srgb[0, 0, 2] < 50
        assert raster.srgb[0, 1, 2] > 200 and raster.srgb[0, 1, 0] < 50

    def test_adaptive_sampling_raises_count_on_edges(self) -> None:
        rgba = _solid(40, 40, (255, 255, 255))
        rgba[:, 20:, :3] = 0
        raster = Rasterizer(samples=2, adaptive=True).rasterize(rgba, 3, 1)
        # 中央セル (x=13.3..26.7) だけが白黒の境界をまたぐ
        assert raster.samples[0, 1] > 2
        assert raster.samples[0, 0] == 2

    def test_adaptive_disabled(self) -> None:
        rgba = _solid(40, 40, (255, 255, 255))
        rgba[:, 20:, :3] = 0
        raster = Rasterizer(samples=2, adaptive=False).rasterize(rgba, 3, 1)
        assert np.all(raster.samples == 2)

    def test_from_options(self) -> None:
        opts = ConversionOptions(raster_samples=5, lanczos_interpolation=False, saturation_boost=0)
        raster = Rasterizer.from_options(opts).rasterize(_solid(10, 10, (255, 0, 0)), 2, 2)
        # 彩度0 → グレー
        r, g, b = raster.srgb[0, 0]
        assert abs(int(r) - int(g)) <= 1 and abs(int(g) - int(b)) <= 1

    def test_upsampling_smaller_source(self) -> None:
        raster = Rasterizer().rasterize(_solid(2, 2, (10, 120, 250)), 8, 8)
        np.testing.assert_array_equal(raster.srgb, np.broadcast_to((10, 120, 250), (8, 8, 3)))

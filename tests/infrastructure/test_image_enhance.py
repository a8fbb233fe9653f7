"""image_enhance.py のテスト。"""

import numpy as np

from emoji_mosaic.infrastructure.color_space import luminance_batch
from emoji_mosaic.infrastructure.image_enhance import (
    clahe_luminance,
    scale_saturation,
    unsharp_mask,
)


class TestUnsharpMask:
    def test_flat_image_unchanged(self) -> None:
        linear = np.full((6, 6, 3), 0.4)
        np.testing.assert_allclose(unsharp_mask(linear, 1.0), linear, atol=1e-12)

    def test_zero_amount_is_copy(self) -> None:
        linear = np.random.default_rng(0).random((4, 4, 3))
        out = unsharp_mask(linear, 0.0)
        np.testing.assert_array_equal(out, linear)
        assert out is not linear

    def test_edge_contrast_increases(self) -> None:
        linear = np.full((6, 6, 3), 0.2)
        linear[:, 3:] = 0.8
        out = unsharp_mask(linear, 1.0)
        assert out[0, 2, 0] < 0.2
        assert out[0, 3, 0] > 0.8
        assert out.min() >= 0.0 and out.max() <= 1.0


class TestClahe:
    def test_zero_strength_unchanged(self) -> None:
        linear = np.random.default_rng(1).random((8, 8, 3))
        np.testing.assert_array_equal(clahe_luminance(linear, 0.0), linear)

    def test_low_contrast_expanded(self) -> None:
        ramp = np.linspace(0.4, 0.5, 16)
        linear = np.stack([np.tile(ramp, (16, 1))] * 3, axis=-1)
        out = clahe_luminance(linear, 1.0)
        assert out.shape == linear.shape
        spread_in = np.ptp(luminance_batch(linear))
        spread_out = np.ptp(luminance_batch(out))
        assert spread_out > spread_in
        assert out.min() >= 0.0 and out.max() <= 1.0

    def test_tiny_image(self) -> None:
        linear = np.full((1, 2, 3), 0.3)
        out = clahe_luminance(linear, 0.5)
        assert out.shape == (1, 2, 3)
        assert np.all(np.isfinite(out))


class TestSaturation:
    def test_identity(self) -> None:
        linear = np.random.default_rng(2).random((3, 3, 3))
        np.testing.assert_array_equal(scale_saturation(linear, 1.0), linear)

    def test_zero_gives_gray_with_same_luminance(self) -> None:
        linear = np.array([[[0.8, 0.2, 0.1]]])
        out = scale_saturation(linear, 0.0)
        assert np.allclose(out[0, 0], out[0, 0, 0])
        np.testing.assert_allclose(luminance_batch(out), luminance_batch(linear))

    def test_boost_increases_spread(self) -> None:
        linear = np.array([[[0.5, 0.3, 0.2]]])
        out = scale_saturation(linear, 1.5)
        assert np.ptp(out) > np.ptp(linear)

"""色空間変換（NumPyベースのバッチ処理）。

sRGB↔リニアRGB、リニアRGB→OKLab を画像全体に対して高速に実行する。
"""

from __future__ import annotations

import numpy as np
import numpy.typing as npt

# sRGB(0-255) → リニアRGB のルックアップテーブル
SRGB_TO_LINEAR_LUT = np.empty(256, dtype=np.float64)
for _i in range(256):
    _v = _i / 255.0
    SRGB_TO_LINEAR_LUT[_i] = _v / 12.92 if _v <= 0.04045 else ((_v + 0.055) / 1.055) ** 2.4

# BT.709 輝度係数（リニアRGBに対して正しい）
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)

_OKLAB_M1 = np.array(
    [
        [0.4122214708, 0.5363325363, 0.0514459929],
        [0.2119034982, 0.6806995451, 0.1073969566],
        [0.0883024619, 0.2817188376, 0.6299787005],
    ],
    dtype=np.float64,
)
_OKLAB_M2 = np.array(
    [
        [0.2104542553, 0.7936177850, -0.0040720468],
        [1.9779984951, -2.4285922050, 0.4505937099],
        [0.0259040371, 0.7827717662, -0.8086757660],
    ],
    dtype=np.float64,
)


def srgb_to_linear_batch(rgb_array: npt.NDArray[np.uint8]) -> npt.NDArray[np.float64]:
    """sRGB uint8 配列をリニアRGB (0.0-1.0) に一括変換。

    Args:
        rgb_array: (..., 3) の uint8 配列

    Returns:
        同形状の float64 配列
    """
    return SRGB_TO_LINEAR_LUT[rgb_array]


def linear_to_srgb_float_batch(linear: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """リニアRGBをsRGB (0.0-1.0, float) に一括変換。範囲外はクランプ。"""
    c = np.clip(linear, 0.0, 1.0)
    return np.where(c <= 0.0031308, 12.92 * c, 1.055 * c ** (1.0 / 2.4) - 0.055)


def linear_to_srgb_batch(linear: npt.NDArray[np.float64]) -> npt.NDArray[np.uint8]:
    """リニアRGBを8bit sRGBに一括変換。

    Args:
        linear: (..., 3) の float64 配列

    Returns:
        同形状の uint8 配列
    """
    srgb = linear_to_srgb_float_batch(linear)
    return np.clip(np.round(srgb * 255.0), 0, 255).astype(np.uint8)


def linear_to_oklab_batch(linear: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """リニアRGBをOKLabに一括変換。

    Args:
        linear: (..., 3) の float64 配列

    Returns:
        (..., 3) の float64 配列 (L, a, b)
    """
    lms = linear @ _OKLAB_M1.T
    return np.cbrt(lms) @ _OKLAB_M2.T


def luminance_batch(linear: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """リニアRGBの相対輝度 Y を算出。(..., 3) → (...)"""
    return linear @ LUMA_WEIGHTS

"""モザイク品質メトリクス。

ラスタ結果（目標色）と、各セルをエントリ代表色で塗った描画結果を比較する。
"""

from __future__ import annotations

import numpy as np
import numpy.typing as npt

from emoji_mosaic.infrastructure.color_space import (
    linear_to_oklab_batch,
    srgb_to_linear_batch,
)


def compute_psnr(
    original: npt.NDArray[np.uint8],
    reconstructed: npt.NDArray[np.uint8],
    mask: npt.NDArray[np.bool_] | None = None,
) -> float:
    """Peak Signal-to-Noise Ratio を算出。

    Args:
        original: (H, W, 3) uint8
        reconstructed: (H, W, 3) uint8
        mask: (H, W) True のセルだけ比較する（None なら全セル）

    Returns:
        PSNR [dB]。同一画像（または比較対象なし）の場合は float('inf')。
    """
    diff = original.astype(np.float64) - reconstructed.astype(np.float64)
    if mask is not None:
        diff = diff[mask]
    if diff.size == 0:
        return float("inf")
    mse = float(np.mean(diff ** 2))
    if mse < 1e-10:
        return float("inf")
    return float(10.0 * np.log10(255.0 ** 2 / mse))


def compute_oklab_delta_e_mean(
    original: npt.NDArray[np.uint8],
    reconstructed: npt.NDArray[np.uint8],
    mask: npt.NDArray[np.bool_] | None = None,
) -> float:
    """平均 OKLab ΔE（ユークリッド距離）を算出。低いほど良い。"""
    lab_orig = linear_to_oklab_batch(srgb_to_linear_batch(original))
    lab_recon = linear_to_oklab_batch(srgb_to_linear_batch(reconstructed))
    diff = lab_orig - lab_recon
    delta_e = np.sqrt(np.sum(diff * diff, axis=-1))
    if mask is not None:
        delta_e = delta_e[mask]
    if delta_e.size == 0:
        return 0.0
    return float(np.mean(delta_e))


def compute_quality(
    original: npt.NDArray[np.uint8],
    reconstructed: npt.NDArray[np.uint8],
    mask: npt.NDArray[np.bool_] | None = None,
) -> dict[str, float]:
    """{"psnr": float, "oklab_de": float}"""
    return {
        "psnr": compute_psnr(original, reconstructed, mask),
        "oklab_de": compute_oklab_delta_e_mean(original, reconstructed, mask),
    }

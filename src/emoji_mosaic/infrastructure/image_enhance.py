"""ラスタ後処理（リニア空間）。

アンシャープマスク、輝度 CLAHE、輝度保存の彩度スケーリング。
いずれも (H, W, 3) float64 のリニアRGBを受け取り、[0, 1] にクランプして返す。
"""

from __future__ import annotations

import numpy as np
import numpy.typing as npt
from scipy.ndimage import uniform_filter

from emoji_mosaic.infrastructure.color_space import luminance_batch

_LUMA_EPSILON = 1e-6


def unsharp_mask(
    linear: npt.NDArray[np.float64],
    amount: float,
    size: int = 3,
) -> npt.NDArray[np.float64]:
    """局所平均を差し引いた高周波成分を増幅して加算。

    Args:
        linear: (H, W, 3) リニアRGB
        amount: 増幅率 (0=無効)
        size: 局所平均のウィンドウサイズ

    Returns:
        シャープ化後の (H, W, 3) float64
    """
    if amount <= 0.0:
        return linear.copy()
    blurred = uniform_filter(linear, size=(size, size, 1), mode="nearest")
    return np.clip(linear + amount * (linear - blurred), 0.0, 1.0)


def _clahe_channel(
    channel: npt.NDArray[np.float64],
    clip_limit: float,
    grid_size: int,
    n_bins: int = 256,
) -> npt.NDArray[np.float64]:
    """[0, 1] の単チャンネルに対する CLAHE 実装。

    Args:
        channel: (H, W) float64
        clip_limit: コントラスト制限係数 (1.0=弱い, 4.0=強い)
        grid_size: グリッド分割数
        n_bins: ヒストグラムのビン数

    Returns:
        CLAHE 適用後の (H, W) float64
    """
    h, w = channel.shape
    scaled = np.clip(channel, 0.0, 1.0) * (n_bins - 1)

    row_step = h / grid_size
    col_step = w / grid_size

    # 各グリッドブロックの CDF を事前計算
    cdfs = np.empty((grid_size, grid_size, n_bins), dtype=np.float64)

    for gy in range(grid_size):
        y0 = int(round(gy * row_step))
        y1 = max(int(round((gy + 1) * row_step)), y0 + 1)
        for gx in range(grid_size):
            x0 = int(round(gx * col_step))
            x1 = max(int(round((gx + 1) * col_step)), x0 + 1)

            block = scaled[y0:y1, x0:x1]
            n_pixels = block.size

            indices = np.clip(block.astype(np.int64), 0, n_bins - 1)
            hist = np.bincount(indices.ravel(), minlength=n_bins).astype(np.float64)

            # クリッピングと超過分の均等再分配
            actual_clip = clip_limit * n_pixels / n_bins
            excess = float(np.sum(np.maximum(hist - actual_clip, 0.0)))
            hist = np.minimum(hist, actual_clip) + excess / n_bins

            cdf = np.cumsum(hist)
            cdf_min = cdf[cdf > 0].min() if np.any(cdf > 0) else 0.0
            denom = n_pixels - cdf_min
            if denom < 1.0:
                cdfs[gy, gx, :] = np.arange(n_bins, dtype=np.float64)
            else:
                cdfs[gy, gx, :] = (cdf - cdf_min) / denom * (n_bins - 1)

    # グリッド中心からの相対位置（バイリニア補間用）
    gy_f = (np.arange(h) + 0.5) / row_step - 0.5
    gx_f = (np.arange(w) + 0.5) / col_step - 0.5
    gy0 = np.floor(gy_f).astype(np.int64)
    gx0 = np.floor(gx_f).astype(np.int64)
    fy = (gy_f - gy0)[:, None]
    fx = (gx_f - gx0)[None, :]
    gy1 = np.clip(gy0 + 1, 0, grid_size - 1)[:, None]
    gx1 = np.clip(gx0 + 1, 0, grid_size - 1)[None, :]
    gy0 = np.clip(gy0, 0, grid_size - 1)[:, None]
    gx0 = np.clip(gx0, 0, grid_size - 1)[None, :]

    idx = np.clip(scaled.astype(np.int64), 0, n_bins - 2)
    frac = scaled - idx

    def lookup(gy: npt.NDArray[np.int64], gx: npt.NDArray[np.int64]) -> npt.NDArray[np.float64]:
        return cdfs[gy, gx, idx] * (1.0 - frac) + cdfs[gy, gx, idx + 1] * frac

    top = lookup(gy0, gx0) * (1.0 - fx) + lookup(gy0, gx1) * fx
    bot = lookup(gy1, gx0) * (1.0 - fx) + lookup(gy1, gx1) * fx
    mapped = top * (1.0 - fy) + bot * fy
    return mapped / (n_bins - 1)


def clahe_luminance(
    linear: npt.NDArray[np.float64],
    strength: float,
    clip_limit: float = 2.0,
    grid_size: int | None = None,
) -> npt.NDArray[np.float64]:
    """輝度に CLAHE を適用し、元画像と strength でブレンド。

    色度は輝度比でスケールして保持する。

    Args:
        linear: (H, W, 3) リニアRGB
        strength: ブレンド率 (0.0=元画像, 1.0=CLAHEのみ)
        clip_limit: コントラスト制限
        grid_size: グリッド分割数 (None なら画像サイズから決定)

    Returns:
        (H, W, 3) float64
    """
    if strength <= 0.0:
        return linear.copy()
    h, w = linear.shape[:2]
    if grid_size is None:
        grid_size = max(1, min(8, min(h, w) // 4))

    luma = luminance_batch(linear)
    equalized = _clahe_channel(luma, clip_limit, grid_size)

    ratio = equalized / np.maximum(luma, _LUMA_EPSILON)
    enhanced = np.where(
        (luma > _LUMA_EPSILON)[..., None],
        linear * ratio[..., None],
        equalized[..., None],
    )
    blended = linear * (1.0 - strength) + enhanced * strength
    return np.clip(blended, 0.0, 1.0)


def scale_saturation(
    linear: npt.NDArray[np.float64],
    factor: float,
) -> npt.NDArray[np.float64]:
    """輝度を保ったまま彩度をスケール (1.0=変更なし, 0.0=グレースケール)。"""
    if factor == 1.0:
        return linear.copy()
    luma = luminance_batch(linear)[..., None]
    return np.clip(luma + (linear - luma) * factor, 0.0, 1.0)

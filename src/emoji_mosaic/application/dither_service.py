"""ディザリングしながらセルごとにエントリを選ぶ実行ループ。

リニアRGBでの Floyd-Steinberg（サーペンタイン走査）、
またはハイブリッドモードでの平坦領域向け Bayer 8×8 組織的ディザ。
局所分散に応じた適応強度で、平坦部にノイズを足さずにグラデーションを保つ。
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np
import numpy.typing as npt
from scipy.ndimage import uniform_filter

from emoji_mosaic.domain.color import Linear, clamp_linear
from emoji_mosaic.domain.image_model import ConversionOptions, DitherMode
from emoji_mosaic.application.matcher import Matcher
from emoji_mosaic.infrastructure.color_space import luminance_batch

logger = logging.getLogger(__name__)

RowCallback = Callable[[int, int], None]
"""行単位の進捗: (完了行数, 総行数)"""

EMPTY_CELL = -1

# Floyd-Steinberg 重み
#         [*] [7]
#    [3] [5] [1]   (/16)
FS_RIGHT = 7.0 / 16.0
FS_DOWN_BACK = 3.0 / 16.0
FS_DOWN = 5.0 / 16.0
FS_DOWN_FORWARD = 1.0 / 16.0

ERROR_CLAMP_LIMIT = 0.1

# 適応強度: 局所標準偏差のシグモイド減衰
ADAPTIVE_WINDOW = 5
ADAPTIVE_STEEPNESS = 10.0
ADAPTIVE_THRESHOLD = 0.15
GRADIENT_BOOST = 0.2
GRADIENT_REFERENCE = 0.05

# ハイブリッド: 局所標準偏差がこれ未満のセルは「グラフィック」
GRAPHIC_STD_THRESHOLD = 0.03
ORDERED_SPREAD = 0.12


def bayer_matrix(n: int = 8) -> npt.NDArray[np.int64]:
    """n×n の Bayer 行列 (値 0..n²-1)。n は2のべき乗。"""
    if n <= 0 or n & (n - 1) != 0:
        raise ValueError(f"Bayer size must be a positive power of 2: {n}")
    matrix = np.zeros((1, 1), dtype=np.int64)
    while matrix.shape[0] < n:
        m = 4 * matrix
        matrix = np.block([[m, m + 2], [m + 3, m + 1]])
    return matrix


# 中心化した閾値 (-0.5, 0.5)
BAYER_8X8 = (bayer_matrix(8) + 0.5) / 64.0 - 0.5


def local_std(
    linear: npt.NDArray[np.float64],
    size: int = ADAPTIVE_WINDOW,
) -> npt.NDArray[np.float64]:
    """size×size 窓の色の標準偏差（チャンネル平均）。(H, W, 3) → (H, W)"""
    mean = uniform_filter(linear, size=(size, size, 1), mode="nearest")
    mean_sq = uniform_filter(linear * linear, size=(size, size, 1), mode="nearest")
    variance = np.maximum(mean_sq - mean * mean, 0.0).mean(axis=-1)
    return np.sqrt(variance)


def adaptive_strength_map(linear: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """セルごとの拡散強度係数 (0, 1.2]。

    分散の大きい領域ほどシグモイドで減衰させ（平坦部を1に正規化）、
    滑らかで勾配のある領域は最大20%増強する。
    """
    std = local_std(linear)

    def sigmoid(s: npt.NDArray[np.float64] | float) -> npt.NDArray[np.float64]:
        return 1.0 / (1.0 + np.exp(ADAPTIVE_STEEPNESS * (s - ADAPTIVE_THRESHOLD)))

    attenuation = sigmoid(std) / sigmoid(0.0)

    luma = luminance_batch(linear)
    if min(luma.shape) >= 2:
        gy, gx = np.gradient(luma)
        gradient = np.hypot(gx, gy)
    else:
        gradient = np.zeros_like(luma)
    smooth = std < ADAPTIVE_THRESHOLD
    boost = 1.0 + GRADIENT_BOOST * np.minimum(1.0, gradient / GRADIENT_REFERENCE) * smooth
    return attenuation * boost


def diffuse_error(
    error: npt.NDArray[np.float64],
    x: int,
    y: int,
    err: Linear,
    direction: int = 1,
) -> None:
    """誤差を前方4近傍に Floyd-Steinberg 重みで拡散。

    direction=-1 はサーペンタインの右→左走査（拡散先を左右反転）。
    グリッド外に落ちる分は捨てる。
    """
    h, w = error.shape[:2]
    forward = x + direction
    back = x - direction
    er, eg, eb = err

    def add(tx: int, ty: int, weight: float) -> None:
        if 0 <= tx < w and 0 <= ty < h:
            cell = error[ty, tx]
            cell[0] += er * weight
            cell[1] += eg * weight
            cell[2] += eb * weight

    add(forward, y, FS_RIGHT)
    add(back, y + 1, FS_DOWN_BACK)
    add(x, y + 1, FS_DOWN)
    add(forward, y + 1, FS_DOWN_FORWARD)


class DitherService:
    """ディザリング付きマッチングループ（1回の変換実行ごとに使う）。

    Args:
        mode: ディザリングモード
        strength: 基本拡散強度 (0.0-1.0)
        adaptive: 局所分散による適応強度を使うか
        clamp_error: 拡散誤差を各成分 ±0.1 に制限するか
    """

    def __init__(
        self,
        mode: DitherMode = DitherMode.FLOYD_STEINBERG,
        strength: float = 0.85,
        adaptive: bool = True,
        clamp_error: bool = False,
    ) -> None:
        self._mode = mode
        self._strength = max(0.0, min(1.0, strength))
        self._adaptive = adaptive
        self._clamp_error = clamp_error

    @classmethod
    def from_options(cls, options: ConversionOptions) -> DitherService:
        return cls(
            mode=options.dither_mode,
            strength=options.dithering_strength / 100.0,
            adaptive=options.adaptive_dithering,
            clamp_error=options.clamp_error,
        )

    @property
    def mode(self) -> DitherMode:
        return self._mode

    def run(
        self,
        pixels: npt.NDArray[np.float64],
        matcher: Matcher,
        skip: npt.NDArray[np.bool_] | None = None,
        progress: RowCallback | None = None,
    ) -> npt.NDArray[np.int64]:
        """全セルについてエントリを選ぶ。

        Args:
            pixels: (H, W, 3) リニアRGBの PixelGrid
            matcher: エントリ選択器
            skip: True のセルは空セル (EMPTY_CELL) にする
            progress: 行単位の進捗コールバック

        Returns:
            (H, W) のエントリインデックス（空セルは EMPTY_CELL）
        """
        h, w = pixels.shape[:2]
        result = np.full((h, w), EMPTY_CELL, dtype=np.int64)

        if self._mode is DitherMode.OFF:
            for y in range(h):
                for x in range(w):
                    if skip is not None and skip[y, x]:
                        continue
                    r, g, b = pixels[y, x]
                    result[y, x] = matcher.match((float(r), float(g), float(b)))
                if progress:
                    progress(y + 1, h)
            return result

        error = np.zeros((h, w, 3), dtype=np.float64)
        if self._adaptive:
            strength_map = self._strength * adaptive_strength_map(pixels)
        else:
            strength_map = np.full((h, w), self._strength, dtype=np.float64)
        if self._mode is DitherMode.HYBRID:
            graphic = local_std(pixels) < GRAPHIC_STD_THRESHOLD
            logger.debug("hybrid dithering: %d/%d graphic cells", int(graphic.sum()), h * w)
        else:
            graphic = np.zeros((h, w), dtype=bool)

        ordered_spread = ORDERED_SPREAD * self._strength
        clamp = self._clamp_error
        limit = ERROR_CLAMP_LIMIT

        for y in range(h):
            serpentine = y % 2 == 1
            direction = -1 if serpentine else 1
            xs = range(w - 1, -1, -1) if serpentine else range(w)

            for x in xs:
                if skip is not None and skip[y, x]:
                    continue
                br, bg, bb = (float(c) for c in pixels[y, x])

                if graphic[y, x]:
                    offset = BAYER_8X8[y % 8, x % 8] * ordered_spread
                    target = clamp_linear((br + offset, bg + offset, bb + offset))
                    result[y, x] = matcher.match(target)
                    continue

                er, eg, eb = error[y, x]
                target = clamp_linear((br + er, bg + eg, bb + eb))
                chosen = matcher.match(target)
                result[y, x] = chosen

                cr, cg, cb = matcher.entry_linear(chosen)
                s = strength_map[y, x]
                err = (
                    (target[0] - cr) * s,
                    (target[1] - cg) * s,
                    (target[2] - cb) * s,
                )
                if clamp:
                    err = (
                        max(-limit, min(limit, err[0])),
                        max(-limit, min(limit, err[1])),
                        max(-limit, min(limit, err[2])),
                    )
                diffuse_error(error, x, y, err, direction)

            if progress:
                progress(y + 1, h)

        return result

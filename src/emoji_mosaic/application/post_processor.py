"""マッチング後の全グリッド後処理。

- 空間コヒーレンス: 近傍と同じエントリに寄せて局所的に均一な領域を作る
- メディアン（外れ値）フィルタ: 周囲から浮いたセルを近傍の最頻エントリで置き換える
どちらもグリッドをインプレースで書き換える。
"""

from __future__ import annotations

import logging
from collections import Counter

import numpy as np
import numpy.typing as npt

from emoji_mosaic.domain.image_model import ConversionOptions
from emoji_mosaic.application.dither_service import EMPTY_CELL
from emoji_mosaic.application.matcher import Matcher, accent_bias

logger = logging.getLogger(__name__)

COHERENCE_SCALE = 0.15

OUTLIER_MIN_NEIGHBORS = 3
OUTLIER_RATIO = 2.0
REPLACEMENT_SLACK = 1.2

_NEIGHBORS_4 = ((0, -1), (-1, 0), (1, 0), (0, 1))
_NEIGHBORS_8 = (
    (-1, -1), (0, -1), (1, -1),
    (-1, 0), (1, 0),
    (-1, 1), (0, 1), (1, 1),
)


class PostProcessor:
    """空間コヒーレンスとメディアンフィルタ。

    Args:
        matcher: マッチングに使った Matcher（距離計算と使用回数を共有）
        spatial_coherence: コヒーレンスパスを実行するか
        coherence_strength: コヒーレンス強度 (0.0-1.0)
        median_filter: 外れ値フィルタを実行するか
    """

    def __init__(
        self,
        matcher: Matcher,
        spatial_coherence: bool = False,
        coherence_strength: float = 0.5,
        median_filter: bool = False,
    ) -> None:
        self._matcher = matcher
        self._spatial_coherence = spatial_coherence
        self._coherence_strength = coherence_strength
        self._median_filter = median_filter

    @classmethod
    def from_options(cls, matcher: Matcher, options: ConversionOptions) -> PostProcessor:
        return cls(
            matcher,
            spatial_coherence=options.spatial_coherence,
            coherence_strength=options.coherence_strength / 100.0,
            median_filter=options.median_filter,
        )

    @property
    def enabled(self) -> bool:
        return self._spatial_coherence or self._median_filter

    def process(
        self,
        grid: npt.NDArray[np.int64],
        pixels: npt.NDArray[np.float64],
    ) -> dict[str, int]:
        """有効なパスを順に実行し、パスごとの置き換え数を返す。"""
        changes: dict[str, int] = {}
        if not self.enabled:
            return changes
        distances = self._distance_map(grid, pixels)
        if self._spatial_coherence:
            changes["coherence"] = self.apply_coherence(grid, pixels, distances)
        if self._median_filter:
            changes["median"] = self.apply_median(grid, pixels, distances)
        logger.debug("post-process: %s", changes)
        return changes

    def _distance(self, pixels: npt.NDArray[np.float64], x: int, y: int, index: int) -> float:
        r, g, b = (float(c) for c in pixels[y, x])
        target = (r, g, b)
        return self._matcher.score(self._matcher.project(target), index, accent_bias(target))

    def _distance_map(
        self,
        grid: npt.NDArray[np.int64],
        pixels: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        """各セルの現在のエントリと目標色の距離。空セルは NaN。"""
        h, w = grid.shape
        distances = np.full((h, w), np.nan, dtype=np.float64)
        for y in range(h):
            for x in range(w):
                index = int(grid[y, x])
                if index != EMPTY_CELL:
                    distances[y, x] = self._distance(pixels, x, y, index)
        return distances

    def _replace(
        self,
        grid: npt.NDArray[np.int64],
        x: int,
        y: int,
        index: int,
    ) -> None:
        usage = self._matcher.usage
        palette = self._matcher.palette
        usage.release(palette[int(grid[y, x])].name)
        usage.record(palette[index].name)
        grid[y, x] = index

    def _allowed(self, index: int) -> bool:
        usage = self._matcher.usage
        entry = self._matcher.palette[index]
        return usage.allows(entry, self._matcher.entry_chroma(index))

    def apply_coherence(
        self,
        grid: npt.NDArray[np.int64],
        pixels: npt.NDArray[np.float64],
        distances: npt.NDArray[np.float64],
    ) -> int:
        """4近傍のエントリが現在の距離の (1 + 0.15·strength) 倍以内なら、その中で最良のものに置き換える。"""
        h, w = grid.shape
        limit = 1.0 + COHERENCE_SCALE * self._coherence_strength
        replaced = 0

        for y in range(h):
            for x in range(w):
                current = int(grid[y, x])
                if current == EMPTY_CELL:
                    continue
                threshold = distances[y, x] * limit
                best: tuple[float, int] | None = None
                for dx, dy in _NEIGHBORS_4:
                    nx, ny = x + dx, y + dy
                    if not (0 <= nx < w and 0 <= ny < h):
                        continue
                    candidate = int(grid[ny, nx])
                    if candidate in (EMPTY_CELL, current):
                        continue
                    d = self._distance(pixels, x, y, candidate)
                    if d <= threshold and (best is None or d < best[0]) and self._allowed(candidate):
                        best = (d, candidate)
                if best is not None:
                    self._replace(grid, x, y, best[1])
                    distances[y, x] = best[0]
                    replaced += 1
        return replaced

    def apply_median(
        self,
        grid: npt.NDArray[np.int64],
        pixels: npt.NDArray[np.float64],
        distances: npt.NDArray[np.float64],
    ) -> int:
        """外れ値セルを8近傍の最頻エントリで置き換える。

        populated な8近傍が3つ以上あり、距離が近傍平均の2倍を超えるセルが対象。
        置き換え後の距離が元の1.2倍以内のときだけ置き換える。
        """
        h, w = grid.shape
        source = grid.copy()
        source_distances = distances.copy()
        replaced = 0

        for y in range(h):
            for x in range(w):
                current = int(source[y, x])
                if current == EMPTY_CELL:
                    continue
                neighbors: list[int] = []
                neighbor_distances: list[float] = []
                for dx, dy in _NEIGHBORS_8:
                    nx, ny = x + dx, y + dy
                    if 0 <= nx < w and 0 <= ny < h and source[ny, nx] != EMPTY_CELL:
                        neighbors.append(int(source[ny, nx]))
                        neighbor_distances.append(float(source_distances[ny, nx]))
                if len(neighbors) < OUTLIER_MIN_NEIGHBORS:
                    continue

                original = float(source_distances[y, x])
                average = sum(neighbor_distances) / len(neighbor_distances)
                if original <= OUTLIER_RATIO * average:
                    continue

                # 同数なら走査順で先に出たもの
                candidate, _ = Counter(neighbors).most_common(1)[0]
                if candidate == current:
                    continue
                d = self._distance(pixels, x, y, candidate)
                if d <= original * REPLACEMENT_SLACK and self._allowed(candidate):
                    self._replace(grid, x, y, candidate)
                    distances[y, x] = d
                    replaced += 1
        return replaced

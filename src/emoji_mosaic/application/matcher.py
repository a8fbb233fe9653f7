"""最近傍パレットエントリの選択。

距離メトリクス・テクスチャペナルティ・使用回数上限・多クラスタプロファイルを
考慮して、目標色に最も近いエントリを選ぶ。
CIEDE2000 選択時は OKLab で上位候補を絞ってから CIEDE2000 で再ランク付けする。
"""

from __future__ import annotations

import logging
from typing import Sequence

from emoji_mosaic.domain.color import Linear, linear_to_rgb
from emoji_mosaic.domain.color_distance import color_distance
from emoji_mosaic.domain.image_model import ColorMetric, ConversionOptions
from emoji_mosaic.domain.palette import (
    ColorProjection,
    EntryProjectionCache,
    PaletteEntry,
    project_linear,
)
from emoji_mosaic.application.usage_tracker import UsageTracker
from emoji_mosaic.infrastructure.palette_index import CandidateSet, PaletteIndex

logger = logging.getLogger(__name__)

# 目標色が白から離れている (8bit 合計差 > 90) ときはアクセント色を優先
ACCENT_WHITE_DISTANCE = 90
ACCENT_BIAS_COLORED = 0.85
ACCENT_BIAS_NEAR_WHITE = 1.05

COLOR_ERROR_PENALTY = 0.35
TEXTURE_PENALTY_SCALE = 0.28
TEXTURE_SCORE_CEILING = 255.0

PROFILE_MEAN_WEIGHT = 0.6
PROFILE_BEST_WEIGHT = 0.4

RERANK_DEPTH = 20

# 一次探索の距離が OKLab ユークリッド距離以上になるメトリクス
_BOUNDED_METRICS = (ColorMetric.OKLAB, ColorMetric.CIEDE2000)


def accent_bias(target: Linear) -> float:
    """目標色に応じたアクセント色距離の倍率。"""
    rgb = linear_to_rgb(target)
    from_white = (255 - rgb.r) + (255 - rgb.g) + (255 - rgb.b)
    return ACCENT_BIAS_COLORED if from_white > ACCENT_WHITE_DISTANCE else ACCENT_BIAS_NEAR_WHITE


class Matcher:
    """目標色 → パレットエントリのインデックス。

    Args:
        palette: パレットエントリ列（順序がタイブレークの順序になる）
        projections: 実行単位の射影キャッシュ
        usage: 使用回数トラッカー
        metric: 距離メトリクス
        texture_penalty: テクスチャペナルティの重み (0.0-1.0)
        index: パレットインデックス (None なら線形探索)
    """

    def __init__(
        self,
        palette: Sequence[PaletteEntry],
        projections: EntryProjectionCache,
        usage: UsageTracker,
        metric: ColorMetric = ColorMetric.OKLAB,
        texture_penalty: float = 0.0,
        index: PaletteIndex | None = None,
    ) -> None:
        self._palette = palette
        self._projections = projections
        self._usage = usage
        self._metric = metric
        self._texture_weight = max(0.0, min(1.0, texture_penalty))
        self._index = index
        self._search_metric = ColorMetric.OKLAB if metric is ColorMetric.CIEDE2000 else metric
        self._penalties = [self._entry_penalty(entry) for entry in palette]
        self._min_penalty = min(self._penalties, default=0.0)
        self.full_scans = 0

    @classmethod
    def create(
        cls,
        palette: Sequence[PaletteEntry],
        options: ConversionOptions,
        cell_count: int,
    ) -> Matcher:
        """オプションから射影キャッシュ・インデックス・トラッカーを組み立てる。"""
        projections = EntryProjectionCache(palette, options.color_metric)
        index = PaletteIndex.build(projections) if PaletteIndex.should_build(len(palette)) else None
        usage = UsageTracker(cell_count, options.tolerance, options.per_color_tolerance)
        logger.debug(
            "matcher: %d entries, metric=%s, index=%s, max uses=%s",
            len(palette), options.color_metric.value,
            "off" if index is None else f"{index.bucket_count} buckets",
            usage.max_uses,
        )
        return cls(
            palette,
            projections,
            usage,
            metric=options.color_metric,
            texture_penalty=options.texture_penalty / 100.0,
            index=index,
        )

    @property
    def palette(self) -> Sequence[PaletteEntry]:
        return self._palette

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    @property
    def metric(self) -> ColorMetric:
        return self._metric

    @property
    def index(self) -> PaletteIndex | None:
        return self._index

    def project(self, target: Linear) -> ColorProjection:
        return project_linear(target, self._metric)

    def entry_linear(self, index: int) -> Linear:
        """エントリ代表色のリニアRGB。"""
        return self._projections.get(index).mean.linear

    def entry_chroma(self, index: int) -> float:
        return self._projections.get(index).chroma

    def _entry_penalty(self, entry: PaletteEntry) -> float:
        penalty = 0.0
        # 抽出失敗でフォールバック色を持つエントリ
        if entry.color_error:
            penalty += COLOR_ERROR_PENALTY
        if self._texture_weight > 0.0:
            score = max(0.0, min(TEXTURE_SCORE_CEILING, entry.texture_score))
            penalty += score / TEXTURE_SCORE_CEILING * TEXTURE_PENALTY_SCALE * self._texture_weight
        return penalty

    def entry_distance(
        self,
        target: ColorProjection,
        index: int,
        bias: float,
        metric: ColorMetric | None = None,
    ) -> float:
        """代表色・アクセント色・クラスタプロファイルのうち最小の距離。"""
        metric = metric or self._search_metric
        projection = self._projections.get(index)

        dist = color_distance(target, projection.mean, metric)
        if projection.accent is not None:
            dist = min(dist, color_distance(target, projection.accent, metric) * bias)
        if projection.clusters:
            cluster_dists = [color_distance(target, c, metric) for c in projection.clusters]
            weighted = sum(w * d for w, d in zip(projection.weights, cluster_dists))
            blended = PROFILE_MEAN_WEIGHT * weighted + PROFILE_BEST_WEIGHT * min(cluster_dists)
            dist = min(dist, blended)
        return dist

    def score(self, target: ColorProjection, index: int, bias: float = 1.0) -> float:
        """最終メトリクスでの距離＋ペナルティ（後処理の比較用）。"""
        return self.entry_distance(target, index, bias, self._metric) + self._penalties[index]

    def _rank(
        self,
        target: ColorProjection,
        indices: Sequence[int],
        bias: float,
    ) -> list[tuple[float, int]]:
        """候補を一次メトリクスのスコア順に並べる。同点は候補の走査順。"""
        penalties = self._penalties
        ranked = [
            (self.entry_distance(target, i, bias) + penalties[i], i) for i in indices
        ]
        ranked.sort(key=lambda item: item[0])

        if self._metric is ColorMetric.CIEDE2000:
            head = [
                (self.entry_distance(target, i, bias, ColorMetric.CIEDE2000) + penalties[i], i)
                for _, i in ranked[:RERANK_DEPTH]
            ]
            head.sort(key=lambda item: item[0])
            ranked = head + ranked[RERANK_DEPTH:]
        return ranked

    def _first_allowed(self, ranked: list[tuple[float, int]]) -> int | None:
        """使用上限内で最良の候補の順位。上限なしなら先頭。"""
        if self._usage.unlimited:
            return 0
        for position, (_, i) in enumerate(ranked):
            if self._usage.allows(self._palette[i], self._projections.get(i).chroma):
                return position
        return None

    def _needs_full_scan(
        self,
        candidates: CandidateSet,
        ranked: list[tuple[float, int]],
        chosen: int | None,
        target: ColorProjection,
        bias: float,
    ) -> bool:
        if candidates.exhaustive:
            return False
        if chosen is None:
            return True
        if self._search_metric not in _BOUNDED_METRICS:
            return False
        # 近傍外のエントリのスコアは bound + 最小ペナルティ以上
        _, i = ranked[chosen]
        primary = self.entry_distance(target, i, bias) + self._penalties[i]
        bound = PaletteIndex.covered_radius(candidates.radius) * min(bias, 1.0) + self._min_penalty
        return primary > bound

    def match(self, target: Linear) -> int:
        """目標色（リニアRGB）に最も近いエントリのインデックスを返し、使用回数を加算。"""
        projection = self.project(target)
        bias = accent_bias(target)

        if self._index is not None:
            candidates = self._index.candidates(projection.oklab)
        else:
            candidates = CandidateSet(tuple(range(len(self._palette))), 0, True)

        ranked = self._rank(projection, candidates.indices, bias)
        allowed = self._first_allowed(ranked)

        if self._index is not None and self._needs_full_scan(
            candidates, ranked, allowed, projection, bias,
        ):
            self.full_scans += 1
            candidates = self._index.all_entries()
            ranked = self._rank(projection, candidates.indices, bias)
            allowed = self._first_allowed(ranked)

        chosen = ranked[allowed if allowed is not None else 0][1]
        self._usage.record(self._palette[chosen].name)
        return chosen

"""matcher.py のテスト。"""

import itertools
import math

import numpy as np

from emoji_mosaic.domain.color import RGB, rgb_to_linear
from emoji_mosaic.domain.image_model import ColorMetric, ConversionOptions
from emoji_mosaic.domain.palette import ClusterColor, EntryProjectionCache, PaletteEntry
from emoji_mosaic.application.matcher import (
    ACCENT_BIAS_COLORED,
    ACCENT_BIAS_NEAR_WHITE,
    Matcher,
    accent_bias,
)
from emoji_mosaic.application.usage_tracker import UsageTracker
from emoji_mosaic.infrastructure.color_space import linear_to_oklab_batch
from emoji_mosaic.infrastructure.palette_index import PaletteIndex


def dense_palette(size: int = 5000, seed: int = 0) -> list[PaletteEntry]:
    levels = [round(i * 255 / 16) for i in range(17)]
    colors = [RGB(r, g, b) for r, g, b in itertools.product(levels, repeat=3)]
    rng = np.random.default_rng(seed)
    while len(colors) < size:
        r, g, b = (int(v) for v in rng.integers(0, 256, 3))
        colors.append(RGB(r, g, b))
    return [PaletteEntry(f"e{i:05d}", c, texture_score=0.0) for i, c in enumerate(colors[:size])]


def make_matcher(
    palette: list[PaletteEntry],
    metric: ColorMetric = ColorMetric.OKLAB,
    tolerance: float = 100,
    texture_penalty: float = 0.0,
    cell_count: int = 100,
    use_index: bool = False,
) -> Matcher:
    cache = EntryProjectionCache(palette, metric)
    index = PaletteIndex.build(cache) if use_index else None
    return Matcher(
        palette, cache, UsageTracker(cell_count, tolerance),
        metric=metric, texture_penalty=texture_penalty, index=index,
    )


def brute_force_weighted_oklab(palette_lab: np.ndarray, query_lab: np.ndarray) -> np.ndarray:
    """OKLab 重み付き距離を全エントリについて計算（ベクトル版）。"""
    c1 = np.hypot(palette_lab[:, 1], palette_lab[:, 2])
    c2 = math.hypot(query_lab[1], query_lab[2])
    w_l = 1.6 + 0.4 * np.exp(-3.0 * (c1 + c2) / 2.0)
    dl = (palette_lab[:, 0] - query_lab[0]) * w_l
    da = palette_lab[:, 1] - query_lab[1]
    db = palette_lab[:, 2] - query_lab[2]
    hue = np.maximum(0.0, da * da + db * db - (c1 - c2) ** 2) * 0.25
    return np.sqrt(dl * dl + da * da + db * db + hue)


class TestAccentBias:
    def test_near_white(self) -> None:
        assert accent_bias((1.0, 1.0, 1.0)) == ACCENT_BIAS_NEAR_WHITE

    def test_colored(self) -> None:
        assert accent_bias((0.2, 0.1, 0.0)) == ACCENT_BIAS_COLORED


class TestBasicMatching:
    def setup_method(self) -> None:
        self.palette = [
            PaletteEntry("red", RGB(255, 0, 0)),
            PaletteEntry("blue", RGB(0, 0, 255)),
        ]

    def test_exact_colors(self) -> None:
        matcher = make_matcher(self.palette)
        assert matcher.match(rgb_to_linear(RGB(255, 0, 0))) == 0
        assert matcher.match(rgb_to_linear(RGB(0, 0, 255))) == 1

    def test_nearest(self) -> None:
        matcher = make_matcher(self.palette)
        assert matcher.match(rgb_to_linear(RGB(200, 40, 60))) == 0
        assert matcher.match(rgb_to_linear(RGB(30, 20, 180))) == 1

    def test_usage_recorded(self) -> None:
        matcher = make_matcher(self.palette)
        matcher.match(rgb_to_linear(RGB(255, 0, 0)))
        matcher.match(rgb_to_linear(RGB(250, 0, 0)))
        assert matcher.usage.count("red") == 2

    def test_ties_resolve_to_first_entry(self) -> None:
        palette = [
            PaletteEntry("e0001", RGB(90, 90, 90)),
            PaletteEntry("e0002", RGB(90, 90, 90)),
        ]
        matcher = make_matcher(palette)
        assert matcher.match(rgb_to_linear(RGB(100, 100, 100))) == 0

    def test_all_metrics_pick_exact_match(self) -> None:
        palette = [
            PaletteEntry("e1", RGB(240, 200, 10)),
            PaletteEntry("e2", RGB(10, 120, 40)),
            PaletteEntry("e3", RGB(90, 10, 130)),
        ]
        for metric in ColorMetric:
            matcher = make_matcher(palette, metric=metric)
            for i, entry in enumerate(palette):
                assert matcher.match(rgb_to_linear(entry.color)) == i


class TestPenalties:
    def test_texture_penalty_prefers_smooth_entry(self) -> None:
        palette = [
            PaletteEntry("e_busy", RGB(100, 100, 100), texture_score=255.0),
            PaletteEntry("e_flat", RGB(108, 108, 108), texture_score=0.0),
        ]
        target = rgb_to_linear(RGB(100, 100, 100))
        assert make_matcher(palette, texture_penalty=0.0).match(target) == 0
        assert make_matcher(palette, texture_penalty=1.0).match(target) == 1

    def test_color_error_penalized(self) -> None:
        palette = [
            PaletteEntry("e_fallback", RGB(128, 128, 128), color_error=True),
            PaletteEntry("e_real", RGB(150, 150, 150)),
        ]
        assert make_matcher(palette).match(rgb_to_linear(RGB(128, 128, 128))) == 1

    def test_accent_color_considered(self) -> None:
        palette = [
            PaletteEntry("e_plain", RGB(120, 60, 60)),
            PaletteEntry("e_accent", RGB(255, 255, 255), accent_color=RGB(200, 0, 0)),
        ]
        assert make_matcher(palette).match(rgb_to_linear(RGB(200, 0, 0))) == 1

    def test_cluster_profile_considered(self) -> None:
        palette = [
            PaletteEntry("e_plain", RGB(90, 90, 90)),
            PaletteEntry(
                "e_profile", RGB(128, 128, 128),
                color_profile=(
                    ClusterColor(RGB(0, 160, 0), 0.9),
                    ClusterColor(RGB(20, 150, 20), 0.1),
                ),
            ),
        ]
        assert make_matcher(palette).match(rgb_to_linear(RGB(0, 160, 0))) == 1


class TestUsageCap:
    def test_zero_tolerance_unique_entries(self) -> None:
        rng = np.random.default_rng(5)
        palette = [
            PaletteEntry(f"e{i:04d}", RGB(*(int(v) for v in rng.integers(0, 256, 3))))
            for i in range(64)
        ]
        cells = 40
        matcher = make_matcher(palette, tolerance=0, cell_count=cells)
        chosen = [
            matcher.match(rgb_to_linear(RGB(120, 120, 120))) for _ in range(cells)
        ]
        assert len(set(chosen)) == cells
        assert all(matcher.usage.count(palette[i].name) == 1 for i in chosen)

    def test_exhausted_cap_falls_back_to_best(self) -> None:
        palette = [PaletteEntry("e0001", RGB(0, 0, 0))]
        matcher = make_matcher(palette, tolerance=0, cell_count=3)
        assert [matcher.match((0.5, 0.5, 0.5)) for _ in range(3)] == [0, 0, 0]


class TestCiede2000Rerank:
    def test_exact_color_wins_after_rerank(self) -> None:
        palette = dense_palette(300)
        matcher = make_matcher(palette, metric=ColorMetric.CIEDE2000)
        for i in (0, 17, 150, 299):
            assert matcher.match(rgb_to_linear(palette[i].color)) == i


class TestIndexCorrectness:
    @classmethod
    def setup_class(cls) -> None:
        cls.palette = dense_palette()
        cls.linear = np.array([rgb_to_linear(e.color) for e in cls.palette])
        cls.lab = linear_to_oklab_batch(cls.linear)

    def test_index_built_by_create(self) -> None:
        matcher = Matcher.create(
            self.palette, ConversionOptions(tolerance=100, texture_penalty=0), 100,
        )
        assert matcher.index is not None
        small = Matcher.create(self.palette[:10], ConversionOptions(), 100)
        assert small.index is None

    def test_matches_brute_force(self) -> None:
        matcher = make_matcher(self.palette, use_index=True)
        rng = np.random.default_rng(1234)
        queries = rng.random((1000, 3))
        query_lab = linear_to_oklab_batch(queries)
        for q, lab in zip(queries, query_lab):
            chosen = matcher.match((float(q[0]), float(q[1]), float(q[2])))
            distances = brute_force_weighted_oklab(self.lab, lab)
            best = int(np.argmin(distances))
            assert chosen == best or abs(distances[chosen] - distances[best]) < 1e-12



class TestIndexWithUniformPenalty:
    """既定オプション（テクスチャペナルティ有効）でも近傍探索で完結すること。"""

    @classmethod
    def setup_class(cls) -> None:
        # texture_score 省略時は全エントリ同じ最大ペナルティになる
        cls.palette = [PaletteEntry(e.name, e.color) for e in dense_palette()]
        cls.lab = linear_to_oklab_batch(
            np.array([rgb_to_linear(e.color) for e in cls.palette])
        )

    def test_full_scan_is_rare(self) -> None:
        matcher = Matcher.create(self.palette, ConversionOptions(), 400)
        assert matcher.index is not None
        queries = np.random.default_rng(7).random((200, 3))
        for q in queries:
            matcher.match((float(q[0]), float(q[1]), float(q[2])))
        assert matcher.full_scans < len(queries) // 2

    def test_same_choice_as_brute_force(self) -> None:
        matcher = Matcher.create(self.palette, ConversionOptions(tolerance=100), 400)
        queries = np.random.default_rng(11).random((200, 3))
        for q, lab in zip(queries, linear_to_oklab_batch(queries)):
            chosen = matcher.match((float(q[0]), float(q[1]), float(q[2])))
            distances = brute_force_weighted_oklab(self.lab, lab)
            best = int(np.argmin(distances))
            assert chosen == best or abs(distances[chosen] - distances[best]) < 1e-12

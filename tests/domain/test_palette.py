"""palette.py のテスト。"""

import pytest

from emoji_mosaic.domain.color import RGB
from emoji_mosaic.domain.image_model import ColorMetric
from emoji_mosaic.domain.palette import (
    UNKNOWN_TEXTURE_SCORE,
    ClusterColor,
    EntryProjectionCache,
    PaletteEntry,
    is_exempt_name,
    project_entry,
    project_linear,
)


class TestPaletteEntry:
    def test_defaults(self) -> None:
        entry = PaletteEntry("cat", RGB(1, 2, 3))
        assert entry.texture_score == UNKNOWN_TEXTURE_SCORE
        assert entry.accent_color is None
        assert entry.color_profile == ()
        assert not entry.color_error

    def test_token(self) -> None:
        assert PaletteEntry("party_parrot", RGB(0, 0, 0)).token == ":party_parrot:"

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            PaletteEntry("", RGB(0, 0, 0))

    def test_negative_texture_rejected(self) -> None:
        with pytest.raises(ValueError):
            PaletteEntry("x", RGB(0, 0, 0), texture_score=-1.0)

    def test_immutable(self) -> None:
        entry = PaletteEntry("x", RGB(0, 0, 0))
        with pytest.raises(AttributeError):
            entry.name = "y"  # type: ignore[misc]


class TestExemptName:
    def test_substring_match(self) -> None:
        assert is_exempt_name("large_blue_circle")
        assert is_exempt_name("White_Square")
        assert is_exempt_name("blank")

    def test_non_exempt(self) -> None:
        assert not is_exempt_name("cat")
        assert not is_exempt_name("e0001")

    def test_custom_patterns(self) -> None:
        assert is_exempt_name("cat", ("ca",))
        assert not is_exempt_name("blank", ("ca",))


class TestProjection:
    def test_only_required_projections(self) -> None:
        lin = (0.2, 0.4, 0.6)
        assert project_linear(lin, ColorMetric.OKLAB).cielab is None
        assert project_linear(lin, ColorMetric.OKLAB).jzazbz is None
        assert project_linear(lin, ColorMetric.CIEDE2000).cielab is not None
        assert project_linear(lin, ColorMetric.JZAZBZ).jzazbz is not None

    def test_weights_normalized(self) -> None:
        entry = PaletteEntry(
            "x", RGB(10, 10, 10),
            color_profile=(
                ClusterColor(RGB(255, 0, 0), 3.0),
                ClusterColor(RGB(0, 0, 255), 1.0),
            ),
        )
        projection = project_entry(entry, ColorMetric.OKLAB)
        assert projection.weights == pytest.approx((0.75, 0.25))
        assert len(projection.clusters) == 2

    def test_zero_weights_become_uniform(self) -> None:
        entry = PaletteEntry(
            "x", RGB(10, 10, 10),
            color_profile=(
                ClusterColor(RGB(255, 0, 0), 0.0),
                ClusterColor(RGB(0, 0, 255), 0.0),
            ),
        )
        assert project_entry(entry, ColorMetric.OKLAB).weights == (0.5, 0.5)

    def test_accent_projected(self) -> None:
        entry = PaletteEntry("x", RGB(10, 10, 10), accent_color=RGB(200, 0, 0))
        projection = project_entry(entry, ColorMetric.OKLAB)
        assert projection.accent is not None
        assert projection.accent.oklab.chroma > projection.chroma


class TestEntryProjectionCache:
    def setup_method(self) -> None:
        self.palette = [
            PaletteEntry("a", RGB(255, 0, 0)),
            PaletteEntry("b", RGB(0, 255, 0)),
        ]

    def test_lazy_and_cached(self) -> None:
        cache = EntryProjectionCache(self.palette, ColorMetric.OKLAB)
        assert len(cache) == 2
        first = cache.get(1)
        assert cache.get(1) is first

    def test_recompute_is_identical(self) -> None:
        a = EntryProjectionCache(self.palette, ColorMetric.CIEDE2000)
        b = EntryProjectionCache(self.palette, ColorMetric.CIEDE2000)
        for i in range(len(a)):
            assert a.get(i) == b.get(i)

    def test_entries_untouched(self) -> None:
        cache = EntryProjectionCache(self.palette, ColorMetric.JZAZBZ)
        for i in range(len(cache)):
            cache.get(i)
        assert self.palette[0] == PaletteEntry("a", RGB(255, 0, 0))

"""palette_io.py のテスト。"""

import json
import tempfile
from pathlib import Path

import pytest

from emoji_mosaic.domain.color import RGB
from emoji_mosaic.domain.errors import PaletteFormatError
from emoji_mosaic.domain.palette import UNKNOWN_TEXTURE_SCORE
from emoji_mosaic.infrastructure.palette_io import (
    load_palette,
    parse_color,
    parse_entry,
    parse_palette,
)


class TestParseColor:
    def test_object(self) -> None:
        assert parse_color({"r": 1, "g": 2, "b": 3}) == RGB(1, 2, 3)

    def test_list(self) -> None:
        assert parse_color([10, 20, 30]) == RGB(10, 20, 30)

    def test_float_rounded(self) -> None:
        assert parse_color({"r": 1.6, "g": 0, "b": 254.5}).r == 2

    @pytest.mark.parametrize(
        "value",
        [{"r": 1, "g": 2}, {"r": 256, "g": 0, "b": 0}, [1, 2], "red", {"r": True, "g": 0, "b": 0}],
    )
    def test_invalid(self, value: object) -> None:
        with pytest.raises(PaletteFormatError):
            parse_color(value)


class TestParseEntry:
    def test_full_record(self) -> None:
        entry = parse_entry({
            "name": "cat",
            "representativeColor": {"r": 200, "g": 150, "b": 50},
            "accentColor": {"r": 0, "g": 0, "b": 0},
            "textureScore": 12.5,
            "colorProfile": [
                {"color": {"r": 255, "g": 200, "b": 0}, "weight": 0.7},
                {"rgb": {"r": 0, "g": 0, "b": 0}, "weight": 0.3},
            ],
        })
        assert entry.name == "cat"
        assert entry.color == RGB(200, 150, 50)
        assert entry.accent_color == RGB(0, 0, 0)
        assert entry.texture_score == 12.5
        assert [c.weight for c in entry.color_profile] == [0.7, 0.3]
        assert entry.color_profile[1].color == RGB(0, 0, 0)

    def test_alternate_keys(self) -> None:
        entry = parse_entry({
            "name": "dog",
            "color": {"r": 1, "g": 2, "b": 3},
            "variance": 40,
            "colorError": True,
        })
        assert entry.color == RGB(1, 2, 3)
        assert entry.texture_score == 40.0
        assert entry.color_error

    def test_compact_profile(self) -> None:
        entry = parse_entry({
            "name": "x",
            "color": [0, 0, 0],
            "cp": [[255, 0, 0, 60], [0, 0, 255, 40]],
        })
        assert [c.weight for c in entry.color_profile] == pytest.approx([0.6, 0.4])
        assert entry.color_profile[0].color == RGB(255, 0, 0)

    def test_defaults(self) -> None:
        entry = parse_entry({"name": "y", "color": [5, 5, 5]})
        assert entry.texture_score == UNKNOWN_TEXTURE_SCORE
        assert entry.accent_color is None
        assert entry.color_profile == ()

    @pytest.mark.parametrize(
        "record",
        [
            {"color": [0, 0, 0]},
            {"name": "", "color": [0, 0, 0]},
            {"name": "z"},
            {"name": "z", "color": [0, 0, 0], "textureScore": -1},
            {"name": "z", "color": [0, 0, 0], "cp": [[1, 2, 3]]},
            {"name": "z", "color": [0, 0, 0], "colorProfile": "bad"},
            "not a record",
        ],
    )
    def test_invalid(self, record: object) -> None:
        with pytest.raises(PaletteFormatError):
            parse_entry(record)


class TestParsePalette:
    def test_list(self) -> None:
        palette = parse_palette([
            {"name": "red", "color": [255, 0, 0]},
            {"name": "blue", "color": [0, 0, 255]},
        ])
        assert [e.name for e in palette] == ["red", "blue"]
        assert isinstance(palette, tuple)

    def test_entries_object(self) -> None:
        palette = parse_palette({"entries": [{"name": "a", "color": [0, 0, 0]}]})
        assert len(palette) == 1

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(PaletteFormatError):
            parse_palette([
                {"name": "a", "color": [0, 0, 0]},
                {"name": "a", "color": [1, 1, 1]},
            ])

    def test_not_a_list(self) -> None:
        with pytest.raises(PaletteFormatError):
            parse_palette("abc")
        with pytest.raises(PaletteFormatError):
            parse_palette({"other": []})


class TestLoadPalette:
    def test_round_trip_file(self) -> None:
        records = [{"name": "sun", "representativeColor": {"r": 250, "g": 200, "b": 0}}]
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8") as f:
            json.dump(records, f)
            path = Path(f.name)
        palette = load_palette(path)
        assert palette[0].color == RGB(250, 200, 0)
        path.unlink()

    def test_invalid_json(self) -> None:
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8") as f:
            f.write("[{not json")
            path = Path(f.name)
        with pytest.raises(PaletteFormatError):
            load_palette(path)
        path.unlink()

"""パレット定義 (JSON) の読み込み。

色プロファイル抽出側が出力するレコードを PaletteEntry に変換する。

レコード形式:
    {"name": str,
     "representativeColor" | "color": {"r", "g", "b"},
     "accentColor"?: {"r", "g", "b"},
     "textureScore" | "variance"?: number,
     "colorProfile"?: [{"rgb" | "color": {"r", "g", "b"}, "weight": number}],
     "cp"?: [[r, g, b, weight%]],
     "colorError"?: bool}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from emoji_mosaic.domain.color import RGB
from emoji_mosaic.domain.errors import PaletteFormatError
from emoji_mosaic.domain.palette import UNKNOWN_TEXTURE_SCORE, ClusterColor, PaletteEntry

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _channel(value: Any, where: str) -> int:
    if not _is_number(value) or not 0 <= value <= 255:
        raise PaletteFormatError(f"{where}: channel must be a number in [0, 255], got {value!r}")
    return int(round(value))


def parse_color(value: Any, where: str = "color") -> RGB:
    """{"r","g","b"} または [r, g, b] を RGB に変換。"""
    if isinstance(value, Mapping):
        try:
            r, g, b = value["r"], value["g"], value["b"]
        except KeyError as exc:
            raise PaletteFormatError(f"{where}: missing channel {exc.args[0]!r}") from exc
    elif isinstance(value, (list, tuple)) and len(value) >= 3:
        r, g, b = value[0], value[1], value[2]
    else:
        raise PaletteFormatError(f"{where}: expected an RGB object, got {value!r}")
    return RGB(_channel(r, where), _channel(g, where), _channel(b, where))


def _parse_profile(record: Mapping[str, Any], where: str) -> tuple[ClusterColor, ...]:
    clusters: list[ClusterColor] = []

    profile = record.get("colorProfile")
    if profile is not None:
        if not isinstance(profile, list):
            raise PaletteFormatError(f"{where}.colorProfile: expected a list")
        for i, item in enumerate(profile):
            item_where = f"{where}.colorProfile[{i}]"
            if not isinstance(item, Mapping):
                raise PaletteFormatError(f"{item_where}: expected an object")
            color = item.get("rgb", item.get("color"))
            weight = item.get("weight", 1.0)
            if not _is_number(weight) or weight < 0:
                raise PaletteFormatError(f"{item_where}: weight must be >= 0")
            clusters.append(ClusterColor(parse_color(color, item_where), float(weight)))

    # 圧縮形式 [[r, g, b, weight%]]
    compact = record.get("cp")
    if compact is not None and not clusters:
        if not isinstance(compact, list):
            raise PaletteFormatError(f"{where}.cp: expected a list")
        for i, item in enumerate(compact):
            item_where = f"{where}.cp[{i}]"
            if not isinstance(item, list) or len(item) != 4:
                raise PaletteFormatError(f"{item_where}: expected [r, g, b, weight]")
            weight = item[3]
            if not _is_number(weight) or weight < 0:
                raise PaletteFormatError(f"{item_where}: weight must be >= 0")
            clusters.append(ClusterColor(parse_color(item[:3], item_where), weight / 100.0))

    return tuple(clusters)


def parse_entry(record: Any, where: str = "entry") -> PaletteEntry:
    """1レコードを PaletteEntry に変換。"""
    if not isinstance(record, Mapping):
        raise PaletteFormatError(f"{where}: expected an object, got {type(record).__name__}")

    name = record.get("name")
    if not isinstance(name, str) or not name:
        raise PaletteFormatError(f"{where}: name must be a non-empty string")
    where = f"{where} ({name})"

    color = record.get("representativeColor", record.get("color"))
    if color is None:
        raise PaletteFormatError(f"{where}: representativeColor is required")

    accent = record.get("accentColor")
    texture = record.get("textureScore", record.get("variance", UNKNOWN_TEXTURE_SCORE))
    if not _is_number(texture) or texture < 0:
        raise PaletteFormatError(f"{where}: textureScore must be a number >= 0")

    return PaletteEntry(
        name=name,
        color=parse_color(color, f"{where}.representativeColor"),
        accent_color=None if accent is None else parse_color(accent, f"{where}.accentColor"),
        texture_score=float(texture),
        color_profile=_parse_profile(record, where),
        color_error=bool(record.get("colorError", False)),
    )


def parse_palette(records: Any) -> tuple[PaletteEntry, ...]:
    """レコード列（または {"entries": [...]}）をパレットに変換。

    Raises:
        PaletteFormatError: 形式不正、または名前の重複
    """
    if isinstance(records, Mapping):
        records = records.get("entries")
    if not isinstance(records, Iterable) or isinstance(records, (str, bytes)):
        raise PaletteFormatError("palette must be a list of entries")

    entries: list[PaletteEntry] = []
    seen: set[str] = set()
    for i, record in enumerate(records):
        entry = parse_entry(record, f"entry[{i}]")
        if entry.name in seen:
            raise PaletteFormatError(f"entry[{i}]: duplicate name {entry.name!r}")
        seen.add(entry.name)
        entries.append(entry)
    return tuple(entries)


def load_palette(path: str | Path) -> tuple[PaletteEntry, ...]:
    """JSONファイルからパレットを読み込む。"""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise PaletteFormatError(f"{path}: invalid JSON: {exc}") from exc
    palette = parse_palette(data)
    logger.info("loaded %d palette entries from %s", len(palette), path)
    return palette

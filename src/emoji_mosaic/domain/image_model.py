"""変換オプションと画像ドメインモデル。"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from emoji_mosaic.domain.errors import InvalidOptionError


class ColorMetric(Enum):
    """色距離メトリクス。"""

    OKLAB = "oklab"
    OKLAB_HK = "oklab-hk"
    CIEDE2000 = "ciede2000"
    JZAZBZ = "jzazbz"


class DitherMode(Enum):
    """ディザリングモード。"""

    OFF = "off"
    FLOYD_STEINBERG = "floyd-steinberg"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class GridSize:
    """出力グリッドのサイズ（セル数）。"""

    width: int
    height: int

    @property
    def cells(self) -> int:
        return self.width * self.height


# 外部インターフェース (camelCase) → フィールド名
_CAMEL_CASE_KEYS = {
    "charBudget": "char_budget",
    "ditheringStrength": "dithering_strength",
    "texturePenalty": "texture_penalty",
    "rasterSamples": "raster_samples",
    "colorMetric": "color_metric",
    "adaptiveSampling": "adaptive_sampling",
    "adaptiveDithering": "adaptive_dithering",
    "lanczosInterpolation": "lanczos_interpolation",
    "hybridDithering": "hybrid_dithering",
    "clampError": "clamp_error",
    "spatialCoherence": "spatial_coherence",
    "coherenceStrength": "coherence_strength",
    "medianFilter": "median_filter",
    "perColorTolerance": "per_color_tolerance",
    "claheStrength": "clahe_strength",
    "sharpeningStrength": "sharpening_strength",
    "saturationBoost": "saturation_boost",
    "minDimension": "min_dimension",
    "maxSourceSide": "max_source_side",
    "transparentFallback": "transparent_fallback",
    "topN": "top_n",
}


def _check_range(name: str, value: float, low: float, high: float | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidOptionError(f"{name} must be a number, got {value!r}")
    if value < low or (high is not None and value > high):
        bounds = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise InvalidOptionError(f"{name} out of range {bounds}: {value!r}")


def _check_int(name: str, value: int, low: int, high: int | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOptionError(f"{name} must be an integer, got {value!r}")
    _check_range(name, value, low, high)


def _check_bool(name: str, value: bool) -> None:
    if not isinstance(value, bool):
        raise InvalidOptionError(f"{name} must be a boolean, got {value!r}")


_BOOL_FIELDS = (
    "dithering",
    "lanczos_interpolation",
    "adaptive_sampling",
    "adaptive_dithering",
    "hybrid_dithering",
    "clamp_error",
    "spatial_coherence",
    "median_filter",
    "per_color_tolerance",
    "clahe",
    "transparent_fallback",
)


@dataclass(frozen=True)
class ConversionOptions:
    """1回の変換に使うオプション。

    構築時に値域を検証し、範囲外なら InvalidOptionError を送出する。
    強度系パラメータは 0-100 のパーセント表記。
    """

    width: int = 20
    height: int = 20
    char_budget: int = 4000
    tolerance: float = 10
    dithering: bool = True
    dithering_strength: float = 85
    texture_penalty: float = 55
    raster_samples: int = 3
    color_metric: ColorMetric = ColorMetric.OKLAB
    lanczos_interpolation: bool = True
    adaptive_sampling: bool = True
    adaptive_dithering: bool = True
    hybrid_dithering: bool = False
    clamp_error: bool = False
    spatial_coherence: bool = False
    coherence_strength: float = 50
    median_filter: bool = False
    per_color_tolerance: bool = False
    clahe: bool = False
    clahe_strength: float = 50
    sharpening_strength: float = 0
    saturation_boost: float = 100
    min_dimension: int = 5
    max_source_side: int = 1024
    transparent_fallback: bool = False
    top_n: int = 5

    def __post_init__(self) -> None:
        if isinstance(self.color_metric, str):
            try:
                object.__setattr__(self, "color_metric", ColorMetric(self.color_metric))
            except ValueError as exc:
                raise InvalidOptionError(
                    f"unknown color_metric: {self.color_metric!r}"
                ) from exc

        _check_int("width", self.width, 1)
        _check_int("height", self.height, 1)
        _check_int("char_budget", self.char_budget, 0)
        _check_range("tolerance", self.tolerance, 0, 100)
        _check_range("dithering_strength", self.dithering_strength, 0, 100)
        _check_range("texture_penalty", self.texture_penalty, 0, 100)
        _check_int("raster_samples", self.raster_samples, 1, 8)
        _check_range("coherence_strength", self.coherence_strength, 0, 100)
        _check_range("clahe_strength", self.clahe_strength, 0, 100)
        _check_range("sharpening_strength", self.sharpening_strength, 0, 100)
        _check_range("saturation_boost", self.saturation_boost, 0, 200)
        _check_int("min_dimension", self.min_dimension, 1)
        _check_int("max_source_side", self.max_source_side, 8)
        _check_int("top_n", self.top_n, 1)
        for name in _BOOL_FIELDS:
            _check_bool(name, getattr(self, name))

    @property
    def dither_mode(self) -> DitherMode:
        if not self.dithering:
            return DitherMode.OFF
        if self.hybrid_dithering:
            return DitherMode.HYBRID
        return DitherMode.FLOYD_STEINBERG

    @property
    def unlimited_reuse(self) -> bool:
        return self.tolerance >= 100

    def replace(self, **changes: Any) -> ConversionOptions:
        """一部のフィールドを差し替えた新しいオプションを返す。"""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> ConversionOptions:
        """camelCase / snake_case どちらのキーも受け付けて構築。"""
        return cls(**normalize_option_keys(mapping))

    def merged(self, mapping: Mapping[str, Any]) -> ConversionOptions:
        """mapping の値で上書きした新しいオプションを返す。"""
        return self.replace(**normalize_option_keys(mapping))


def normalize_option_keys(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """外部キーをフィールド名に変換。未知のキーは InvalidOptionError。"""
    field_names = {f.name for f in dataclasses.fields(ConversionOptions)}
    kwargs: dict[str, Any] = {}
    for key, value in mapping.items():
        name = _CAMEL_CASE_KEYS.get(key, key)
        if name not in field_names:
            raise InvalidOptionError(f"unknown option: {key!r}")
        kwargs[name] = value
    return kwargs

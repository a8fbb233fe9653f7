"""エントリ使用回数の追跡と上限判定。

1回の変換実行にスコープされ、実行ごとに作り直す。
"""

from __future__ import annotations

import math
from typing import Sequence

from emoji_mosaic.domain.palette import EXEMPT_NAME_PATTERNS, PaletteEntry, is_exempt_name

# 彩度ごとの上限倍率（経験的な閾値）
NEUTRAL_CHROMA = 0.05
MUTED_CHROMA = 0.15
MUTED_MULTIPLIER = 2.0


def max_uses_for(cell_count: int, tolerance: float) -> float:
    """tolerance (0-100) から1エントリあたりの使用上限を算出。

    0 ならほぼ一意（1回）、100 なら無制限。
    """
    if tolerance >= 100:
        return math.inf
    return float(max(1, math.floor(cell_count * (tolerance / 100.0))))


class UsageTracker:
    """エントリ名 → 使用回数。"""

    def __init__(
        self,
        cell_count: int,
        tolerance: float,
        per_color_tolerance: bool = False,
        exempt_patterns: Sequence[str] = EXEMPT_NAME_PATTERNS,
        neutral_chroma: float = NEUTRAL_CHROMA,
        muted_chroma: float = MUTED_CHROMA,
        muted_multiplier: float = MUTED_MULTIPLIER,
    ) -> None:
        self._max_uses = max_uses_for(cell_count, tolerance)
        self._per_color = per_color_tolerance
        self._exempt_patterns = tuple(exempt_patterns)
        self._neutral_chroma = neutral_chroma
        self._muted_chroma = muted_chroma
        self._muted_multiplier = muted_multiplier
        self._counts: dict[str, int] = {}
        self._exempt_cache: dict[str, bool] = {}

    @property
    def max_uses(self) -> float:
        return self._max_uses

    @property
    def unlimited(self) -> bool:
        return math.isinf(self._max_uses)

    def is_exempt(self, name: str) -> bool:
        exempt = self._exempt_cache.get(name)
        if exempt is None:
            exempt = is_exempt_name(name, self._exempt_patterns)
            self._exempt_cache[name] = exempt
        return exempt

    def cap_for(self, chroma: float) -> float:
        """エントリ彩度に応じた使用上限。

        per_color_tolerance 有効時: ニュートラルは無制限、低彩度は倍。
        """
        if self._per_color:
            if chroma < self._neutral_chroma:
                return math.inf
            if chroma < self._muted_chroma:
                return self._max_uses * self._muted_multiplier
        return self._max_uses

    def allows(self, entry: PaletteEntry, chroma: float) -> bool:
        """エントリをもう1回使えるか。"""
        if self.unlimited or self.is_exempt(entry.name):
            return True
        return self._counts.get(entry.name, 0) < self.cap_for(chroma)

    def count(self, name: str) -> int:
        return self._counts.get(name, 0)

    def record(self, name: str) -> None:
        self._counts[name] = self._counts.get(name, 0) + 1

    def release(self, name: str) -> None:
        """使用回数を1減らす（後処理での置き換え用）。"""
        count = self._counts.get(name, 0)
        if count <= 1:
            self._counts.pop(name, None)
        else:
            self._counts[name] = count - 1


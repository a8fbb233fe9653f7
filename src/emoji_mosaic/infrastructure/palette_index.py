"""パレットの空間バケットインデックス。

OKLab 座標を固定幅のビンで3D整数グリッドに量子化し、
近傍バケットだけを候補として返すことで最近色検索を劣線形化する。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from emoji_mosaic.domain.color import OKLab
from emoji_mosaic.domain.palette import EntryProjectionCache

logger = logging.getLogger(__name__)

# これ未満のパレットは線形探索の方が速い
INDEX_THRESHOLD = 1000

BIN_WIDTH_L = 0.05
BIN_WIDTH_AB = 0.04

# 3×3×3 近傍の候補数がこれ未満なら 5×5×5 に広げる
MIN_CANDIDATES = 200

BucketKey = tuple[int, int, int]


def bucket_key(lab: OKLab) -> BucketKey:
    """OKLab 座標をバケットキーに量子化。"""
    return (
        math.floor(lab.l / BIN_WIDTH_L),
        math.floor(lab.a / BIN_WIDTH_AB),
        math.floor(lab.b / BIN_WIDTH_AB),
    )


@dataclass(frozen=True)
class CandidateSet:
    """候補エントリの集合。

    Attributes:
        indices: パレット順に並んだエントリインデックス
        radius: 探索したバケット半径 (0 = 全パレット)
        exhaustive: 全パレットを返したか
    """

    indices: tuple[int, ...]
    radius: int
    exhaustive: bool


class PaletteIndex:
    """OKLab バケットインデックス。構築後は不変。"""

    def __init__(self, buckets: dict[BucketKey, tuple[int, ...]], size: int) -> None:
        self._buckets = buckets
        self._size = size
        self._all = tuple(range(size))

    @staticmethod
    def should_build(palette_size: int, threshold: int = INDEX_THRESHOLD) -> bool:
        return palette_size >= threshold

    @classmethod
    def build(cls, projections: EntryProjectionCache) -> PaletteIndex:
        """代表色・アクセント色・各クラスタ色をバケットに登録。"""
        staging: dict[BucketKey, set[int]] = {}
        for i in range(len(projections)):
            projection = projections.get(i)
            colors = [projection.mean]
            if projection.accent is not None:
                colors.append(projection.accent)
            colors.extend(projection.clusters)
            for color in colors:
                staging.setdefault(bucket_key(color.oklab), set()).add(i)

        buckets = {key: tuple(sorted(members)) for key, members in staging.items()}
        logger.debug("palette index: %d entries in %d buckets", len(projections), len(buckets))
        return cls(buckets, len(projections))

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    @staticmethod
    def covered_radius(radius: int) -> float:
        """半径 radius の近傍が必ず含む OKLab ユークリッド距離。

        近傍外のエントリは、クエリからこの距離以上離れている。
        """
        return radius * min(BIN_WIDTH_L, BIN_WIDTH_AB)

    def _collect(self, key: BucketKey, radius: int) -> set[int]:
        kl, ka, kb = key
        found: set[int] = set()
        for dl in range(-radius, radius + 1):
            for da in range(-radius, radius + 1):
                for db in range(-radius, radius + 1):
                    members = self._buckets.get((kl + dl, ka + da, kb + db))
                    if members:
                        found.update(members)
        return found

    def all_entries(self) -> CandidateSet:
        return CandidateSet(self._all, 0, True)

    def candidates(self, lab: OKLab) -> CandidateSet:
        """クエリ色の近傍バケットにあるエントリを返す。

        3×3×3 で MIN_CANDIDATES 未満なら 5×5×5 に広げる。
        それでも空なら全パレット。
        """
        if not self._buckets:
            return self.all_entries()

        key = bucket_key(lab)
        radius = 1
        found = self._collect(key, radius)
        if len(found) < MIN_CANDIDATES:
            radius = 2
            found = self._collect(key, radius)
        if not found:
            return self.all_entries()
        return CandidateSet(tuple(sorted(found)), radius, False)

"""パレットエントリ定義と実行単位の射影キャッシュ。

PaletteEntry は外部から渡される不変オブジェクト。
色空間射影は EntryProjectionCache に遅延計算して保持し、
エントリ自体は変更しない。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from emoji_mosaic.domain.color import (
    LAB,
    RGB,
    Jzazbz,
    Linear,
    OKLab,
    linear_to_cielab,
    linear_to_jzazbz,
    linear_to_oklab,
    rgb_to_linear,
)
from emoji_mosaic.domain.image_model import ColorMetric

UNKNOWN_TEXTURE_SCORE = 999.0
"""テクスチャスコア不明を表す番兵値"""

FALLBACK_NAME = "white_square"
"""空セル・透明セルに使うトークン名"""

# 使用回数制限から除外するエントリ名（部分一致、単色・空白系）
EXEMPT_NAME_PATTERNS: tuple[str, ...] = (
    "space", "blank", "white", "black", "red", "blue", "green", "yellow", "square",
)


def is_exempt_name(name: str, patterns: Sequence[str] = EXEMPT_NAME_PATTERNS) -> bool:
    """エントリ名が使用回数制限の除外対象か判定。"""
    lower = name.lower()
    return any(pattern in lower for pattern in patterns)


@dataclass(frozen=True)
class ClusterColor:
    """多クラスタ色プロファイルの1要素。"""

    color: RGB
    weight: float


@dataclass(frozen=True)
class PaletteEntry:
    """パレットエントリ（絵文字1つ分の色記述子）。

    Attributes:
        name: 一意な識別子
        color: 代表色 (sRGB)
        accent_color: アクセント色（輪郭・透過絵文字向け）
        texture_score: 色の不均一さ (>= 0, 999 = 不明)
        color_profile: 重み付き多クラスタ色プロファイル
        color_error: 代表色が抽出失敗時のフォールバック値か
    """

    name: str
    color: RGB
    accent_color: RGB | None = None
    texture_score: float = UNKNOWN_TEXTURE_SCORE
    color_profile: tuple[ClusterColor, ...] = ()
    color_error: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("palette entry name must not be empty")
        if self.texture_score < 0:
            raise ValueError(f"texture_score must be >= 0: {self.texture_score!r}")

    @property
    def token(self) -> str:
        return f":{self.name}:"


@dataclass(frozen=True)
class ColorProjection:
    """1色分の色空間射影。メトリクスが不要とする射影は None。"""

    linear: Linear
    oklab: OKLab
    cielab: LAB | None = None
    jzazbz: Jzazbz | None = None


def project_linear(lin: Linear, metric: ColorMetric) -> ColorProjection:
    """リニアRGBから、メトリクスに必要な射影だけを計算。"""
    oklab = linear_to_oklab(lin)
    cielab = linear_to_cielab(lin) if metric is ColorMetric.CIEDE2000 else None
    jzazbz = linear_to_jzazbz(lin) if metric is ColorMetric.JZAZBZ else None
    return ColorProjection(lin, oklab, cielab, jzazbz)


@dataclass(frozen=True)
class EntryProjection:
    """パレットエントリの射影一式。"""

    mean: ColorProjection
    accent: ColorProjection | None
    clusters: tuple[ColorProjection, ...]
    weights: tuple[float, ...]
    chroma: float


def project_entry(entry: PaletteEntry, metric: ColorMetric) -> EntryProjection:
    """エントリの代表色・アクセント色・クラスタ色を射影。

    クラスタ重みは合計1に正規化する（合計0なら均等）。
    """
    mean = project_linear(rgb_to_linear(entry.color), metric)
    accent = (
        project_linear(rgb_to_linear(entry.accent_color), metric)
        if entry.accent_color is not None
        else None
    )
    clusters = tuple(
        project_linear(rgb_to_linear(c.color), metric) for c in entry.color_profile
    )
    total = sum(max(0.0, c.weight) for c in entry.color_profile)
    if total > 0.0:
        weights = tuple(max(0.0, c.weight) / total for c in entry.color_profile)
    else:
        weights = tuple(1.0 / len(clusters) for _ in clusters)
    return EntryProjection(mean, accent, clusters, weights, mean.oklab.chroma)


@dataclass
class EntryProjectionCache:
    """実行単位の射影キャッシュ（エントリのインデックスをキーとするアリーナ）。

    射影は決定的な純関数なので、同じエントリを2回計算しても結果は同一。
    """

    palette: Sequence[PaletteEntry]
    metric: ColorMetric
    _slots: list[EntryProjection | None] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._slots = [None] * len(self.palette)

    def __len__(self) -> int:
        return len(self._slots)

    def get(self, index: int) -> EntryProjection:
        projection = self._slots[index]
        if projection is None:
            projection = project_entry(self.palette[index], self.metric)
            self._slots[index] = projection
        return projection

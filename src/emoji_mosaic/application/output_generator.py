"""結果グリッドのテキスト化と統計。"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import numpy.typing as npt

from emoji_mosaic.domain.palette import FALLBACK_NAME, PaletteEntry
from emoji_mosaic.application.dither_service import EMPTY_CELL
from emoji_mosaic.infrastructure.image_metrics import compute_quality

FALLBACK_TOKEN = f":{FALLBACK_NAME}:"


@dataclass(frozen=True)
class MosaicStats:
    """変換結果の統計。

    Attributes:
        total_cells: エントリが入ったセル数
        unique_entries: 使われたエントリの種類数
        null_cells: 空セル（フォールバックトークン）の数
        width, height: グリッドサイズ
        char_count: シリアライズ後の文字数（改行含む）
        top_entries: 使用回数上位の (名前, 回数)
        quality: {"psnr", "oklab_de"}（描画結果 vs ラスタ）
    """

    total_cells: int
    unique_entries: int
    null_cells: int
    width: int
    height: int
    char_count: int
    top_entries: tuple[tuple[str, int], ...]
    quality: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "totalCells": self.total_cells,
            "uniqueEntries": self.unique_entries,
            "nullCells": self.null_cells,
            "width": self.width,
            "height": self.height,
            "charCount": self.char_count,
            "topEntries": [{"name": name, "count": count} for name, count in self.top_entries],
            "quality": dict(self.quality),
        }


def serialize(grid: npt.NDArray[np.int64], palette: Sequence[PaletteEntry]) -> str:
    """グリッドを行ごとに改行で連結したトークン列にする。空セルはフォールバックトークン。"""
    lines = []
    for row in grid:
        lines.append("".join(
            FALLBACK_TOKEN if index == EMPTY_CELL else palette[index].token
            for index in row.tolist()
        ))
    return "\n".join(lines)


def render_grid_colors(
    grid: npt.NDArray[np.int64],
    palette: Sequence[PaletteEntry],
    fallback: tuple[int, int, int] = (255, 255, 255),
) -> npt.NDArray[np.uint8]:
    """各セルをエントリ代表色で塗った (H, W, 3) uint8 配列。"""
    colors = np.array(
        [entry.color.to_tuple() for entry in palette] + [fallback], dtype=np.uint8,
    )
    # EMPTY_CELL (-1) は末尾のフォールバック色を指す
    return colors[grid]


def compute_stats(
    grid: npt.NDArray[np.int64],
    palette: Sequence[PaletteEntry],
    text: str,
    top_n: int = 5,
    raster: npt.NDArray[np.uint8] | None = None,
) -> MosaicStats:
    """統計を算出。raster を渡すと品質メトリクスも計算する。"""
    h, w = grid.shape
    populated = grid != EMPTY_CELL
    counts = Counter(palette[index].name for index in grid[populated].tolist())

    quality: dict[str, float] = {}
    if raster is not None:
        quality = compute_quality(raster, render_grid_colors(grid, palette), populated)

    return MosaicStats(
        total_cells=int(populated.sum()),
        unique_entries=len(counts),
        null_cells=int(h * w - populated.sum()),
        width=w,
        height=h,
        char_count=len(text),
        top_entries=tuple(counts.most_common(top_n)),
        quality=quality,
    )

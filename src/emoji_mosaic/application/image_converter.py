"""画像 → 絵文字モザイク変換パイプライン。

読み込み→グリッドサイズ決定→ラスタライズ→マッチング/ディザリング→後処理→出力の一連処理。
進捗コールバック対応。
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
import numpy.typing as npt

from emoji_mosaic.domain.errors import NoPaletteError
from emoji_mosaic.domain.image_model import ConversionOptions, GridSize
from emoji_mosaic.domain.palette import PaletteEntry
from emoji_mosaic.application.dither_service import EMPTY_CELL, DitherService
from emoji_mosaic.application.matcher import Matcher
from emoji_mosaic.application.output_generator import MosaicStats, compute_stats, serialize
from emoji_mosaic.application.post_processor import PostProcessor
from emoji_mosaic.infrastructure.image_io import ImageSource, limit_image_size, load_image
from emoji_mosaic.infrastructure.rasterizer import Rasterizer, RasterResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]
"""進捗コールバック: (stage_name, progress_0_to_1)"""

# 1トークンあたりの平均文字数（":name:" の概算）
AVG_TOKEN_LENGTH = 10

# 平均アルファがこれ未満 (/255) のセルは透明扱い
TRANSPARENCY_THRESHOLD = 128

MATCH_PROGRESS_START = 0.4
MATCH_PROGRESS_END = 0.9


def adjust_dimensions_for_budget(
    width: int,
    height: int,
    char_budget: int,
    min_dimension: int = 5,
) -> GridSize:
    """文字数上限に収まるようにグリッドサイズを縮小。

    各辺は min_dimension 未満にはしない（要求サイズが小さい場合も引き上げる）。
    char_budget=0 なら上限なし。
    """
    width = max(min_dimension, width)
    height = max(min_dimension, height)
    if char_budget == 0:
        return GridSize(width, height)

    max_cells = char_budget // AVG_TOKEN_LENGTH
    cells = width * height
    if cells <= max_cells:
        return GridSize(width, height)

    scale = math.sqrt(max_cells / cells)
    return GridSize(
        max(min_dimension, math.floor(width * scale)),
        max(min_dimension, math.floor(height * scale)),
    )


@dataclass(frozen=True)
class ConversionResult:
    """変換結果。

    Attributes:
        indices: (H, W) エントリインデックス（空セルは -1）
        grid: 行ごとのエントリ（空セルは None）
        text: シリアライズ済みトークン列
        stats: 統計
        size: グリッドサイズ
        raster: ラスタライズ結果
    """

    indices: npt.NDArray[np.int64]
    grid: list[list[PaletteEntry | None]]
    text: str
    stats: MosaicStats
    size: GridSize
    raster: RasterResult


class ImageConverter:
    """画像変換パイプライン。

    Args:
        palette: パレットエントリ列（空なら NoPaletteError）
        options: 変換オプション
    """

    def __init__(
        self,
        palette: Sequence[PaletteEntry],
        options: ConversionOptions | None = None,
    ) -> None:
        if not palette:
            raise NoPaletteError("palette is empty; load a palette before converting")
        self._palette = tuple(palette)
        self._options = options or ConversionOptions()

    @property
    def palette(self) -> tuple[PaletteEntry, ...]:
        return self._palette

    @property
    def options(self) -> ConversionOptions:
        return self._options

    @options.setter
    def options(self, value: ConversionOptions) -> None:
        self._options = value

    def grid_size(self) -> GridSize:
        opts = self._options
        return adjust_dimensions_for_budget(
            opts.width, opts.height, opts.char_budget, opts.min_dimension,
        )

    def convert(
        self,
        source: ImageSource,
        progress: ProgressCallback | None = None,
    ) -> ConversionResult:
        """画像を変換パイプラインで処理。

        Args:
            source: 入力画像（パス / バイト列 / PIL画像 / 配列）
            progress: 進捗コールバック

        Returns:
            ConversionResult

        Raises:
            ImageLoadError: 画像のデコードに失敗した場合
        """
        opts = self._options
        started = time.perf_counter()

        if progress:
            progress("読み込み", 0.1)

        rgba = limit_image_size(load_image(source), opts.max_source_side)

        if progress:
            progress("サイズ計算", 0.2)

        size = self.grid_size()
        if (size.width, size.height) != (opts.width, opts.height):
            logger.info(
                "grid %dx%d adjusted to %dx%d (char budget %d)",
                opts.width, opts.height, size.width, size.height, opts.char_budget,
            )
        logger.info(
            "converting %dx%d image to %dx%d grid with %d palette entries",
            rgba.shape[1], rgba.shape[0], size.width, size.height, len(self._palette),
        )

        if progress:
            progress("ラスタライズ", 0.3)

        stage_started = time.perf_counter()
        raster = Rasterizer.from_options(opts).rasterize(rgba, size.width, size.height)
        logger.debug("rasterize: %.3fs", time.perf_counter() - stage_started)
        skip = None
        if opts.transparent_fallback:
            skip = raster.coverage < TRANSPARENCY_THRESHOLD / 255.0

        if progress:
            progress("マッチング", MATCH_PROGRESS_START)

        def on_row(done: int, total: int) -> None:
            if progress:
                span = MATCH_PROGRESS_END - MATCH_PROGRESS_START
                progress("マッチング", MATCH_PROGRESS_START + span * done / total)

        matcher = Matcher.create(self._palette, opts, size.cells)
        dither = DitherService.from_options(opts)
        stage_started = time.perf_counter()
        indices = dither.run(raster.linear, matcher, skip, on_row)
        logger.debug(
            "matching (%s): %.3fs", dither.mode.value, time.perf_counter() - stage_started,
        )
        if matcher.full_scans:
            logger.debug("index fallback scans: %d", matcher.full_scans)

        if progress:
            progress("後処理", 0.9)

        stage_started = time.perf_counter()
        PostProcessor.from_options(matcher, opts).process(indices, raster.linear)
        logger.debug("post-process: %.3fs", time.perf_counter() - stage_started)

        if progress:
            progress("出力", 0.95)

        text = serialize(indices, self._palette)
        stats = compute_stats(indices, self._palette, text, opts.top_n, raster.srgb)
        grid = [
            [None if i == EMPTY_CELL else self._palette[i] for i in row]
            for row in indices.tolist()
        ]

        logger.info(
            "done in %.2fs: %d cells, %d unique entries, %d chars",
            time.perf_counter() - started,
            stats.total_cells, stats.unique_entries, stats.char_count,
        )
        if progress:
            progress("完了", 1.0)

        return ConversionResult(indices, grid, text, stats, size, raster)

"""変換エンジンの例外階層。"""

from __future__ import annotations


class MosaicError(Exception):
    """emoji_mosaic の全例外の基底クラス。"""


class NoPaletteError(MosaicError):
    """パレットが空、または未指定。"""


class ImageLoadError(MosaicError):
    """画像のデコードに失敗。"""


class InvalidOptionError(MosaicError, ValueError):
    """変換オプションが範囲外。"""


class PaletteFormatError(MosaicError, ValueError):
    """パレット定義の形式が不正。"""

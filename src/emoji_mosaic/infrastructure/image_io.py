"""画像I/O（Pillow ベース）。

画像のデコード、保存、事前縮小を担当。
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Union

import numpy as np
import numpy.typing as npt
from PIL import Image, UnidentifiedImageError

from emoji_mosaic.domain.errors import ImageLoadError

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes, Image.Image, npt.NDArray[np.uint8]]
"""デコード可能な入力: ファイルパス / エンコード済みバイト列 / PIL画像 / 配列"""


def _open(source: str | Path | bytes) -> Image.Image:
    if isinstance(source, bytes):
        return Image.open(io.BytesIO(source))
    return Image.open(source)


def _array_to_rgba(array: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    if array.ndim == 2:
        array = np.stack([array] * 3, axis=-1)
    if array.ndim != 3 or array.shape[2] not in (3, 4):
        raise ImageLoadError(f"unsupported array shape: {array.shape}")
    if array.shape[2] == 3:
        alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
        array = np.concatenate([array, alpha], axis=-1)
    return np.ascontiguousarray(array, dtype=np.uint8)


def load_image(source: ImageSource) -> npt.NDArray[np.uint8]:
    """画像を読み込み、RGBA配列として返す。

    Args:
        source: ファイルパス、エンコード済みバイト列、PIL画像、または配列

    Returns:
        (H, W, 4) の uint8 配列 (RGBA)

    Raises:
        ImageLoadError: デコードに失敗した場合
    """
    if isinstance(source, np.ndarray):
        rgba = _array_to_rgba(source)
    elif isinstance(source, Image.Image):
        rgba = np.array(source.convert("RGBA"), dtype=np.uint8)
    else:
        try:
            with _open(source) as img:
                img.load()
                rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ImageLoadError(f"failed to load image: {exc}") from exc

    if rgba.shape[0] == 0 or rgba.shape[1] == 0:
        raise ImageLoadError("image has no pixels")
    return rgba


def save_image(array: npt.NDArray[np.uint8], path: str | Path) -> None:
    """RGB / RGBA 配列を画像ファイルとして保存。

    Args:
        array: (H, W, 3) または (H, W, 4) の uint8 配列
        path: 保存先パス (PNG, BMP等)
    """
    img = Image.fromarray(array)
    img.save(path)


def limit_image_size(
    rgba: npt.NDArray[np.uint8],
    max_side: int,
) -> npt.NDArray[np.uint8]:
    """長辺が max_side を超える画像を縮小（メモリ上限）。

    Args:
        rgba: (H, W, 4) の uint8 配列
        max_side: 長辺の上限

    Returns:
        縮小済み (またはそのままの) (H, W, 4) uint8 配列
    """
    h, w = rgba.shape[:2]
    longest = max(h, w)
    if longest <= max_side:
        return rgba

    scale = max_side / longest
    new_w = max(1, round(w * scale))
    new_h = max(1, round(h * scale))
    logger.debug("downsampling source %dx%d -> %dx%d", w, h, new_w, new_h)
    img = Image.fromarray(rgba)
    img = img.resize((new_w, new_h), Image.Resampling.LANCZOS)
    return np.array(img, dtype=np.uint8)

"""像素对比模块：逐像素比较两张截图"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image

from .config import VisualDiffConfig

PathLike = Union[str, Path]


@dataclass
class PixelDiff:
    pixels_changed: int
    total_pixels: int
    mask: Optional[np.ndarray] = None  # 像素不同处为 True
    canvas: Optional[np.ndarray] = None  # 共享画布上的变化后图像，RGBA

    @property
    def percent_different(self) -> float:
        if not self.total_pixels:
            return 0.0
        return round(self.pixels_changed * 100.0 / self.total_pixels, 4)


def file_digest(path: PathLike) -> str:
    """文件内容的 SHA-256"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _load_rgba(path: PathLike) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGBA"), dtype=np.int16)


def _pad(pixels: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
    height, width = shape
    padded = np.zeros((height, width, 4), dtype=np.int16)
    padded[: pixels.shape[0], : pixels.shape[1]] = pixels
    return padded


def compare_images(before: PathLike, after: PathLike, config: Optional[VisualDiffConfig] = None) -> PixelDiff:
    """
    逐像素比较两张图片。

    尺寸不同的图片放在同一画布上对比，只存在于其中一张的像素计为变化。
    任一 RGBA 通道差值超过 ``config.threshold`` 即视为该像素变化。
    ``config.ignore_regions`` 既不计入变化数，也不计入总像素数。
    """
    config = config or VisualDiffConfig()
    a = _load_rgba(before)
    b = _load_rgba(after)

    shape = (max(a.shape[0], b.shape[0]), max(a.shape[1], b.shape[1]))
    overlap = np.zeros(shape, dtype=bool)
    overlap[: min(a.shape[0], b.shape[0]), : min(a.shape[1], b.shape[1])] = True
    a, b = _pad(a, shape), _pad(b, shape)

    delta = np.abs(a - b).max(axis=2)
    mask = (delta > config.threshold) | ~overlap

    considered = np.ones(shape, dtype=bool)
    for x, y, width, height in config.ignore_regions:
        considered[max(y, 0): y + height, max(x, 0): x + width] = False
    mask &= considered

    return PixelDiff(
        pixels_changed=int(mask.sum()),
        total_pixels=int(considered.sum()),
        mask=mask,
        canvas=b,
    )


def write_diff_image(diff: PixelDiff, path: PathLike, config: Optional[VisualDiffConfig] = None) -> str:
    """在淡化的变化后图像上，用 ``diff_color`` 标出变化像素"""
    config = config or VisualDiffConfig()
    rgb = diff.canvas[..., :3].astype(np.float32)
    white = np.full_like(rgb, 255.0)
    out = white * (1.0 - config.alpha) + rgb * config.alpha
    out[diff.mask] = config.diff_color

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.rint(out).astype(np.uint8)).save(path)
    return str(path)

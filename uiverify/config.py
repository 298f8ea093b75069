"""配置模块：浏览器设置、视觉对比设置与默认值"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from .errors import ValidationError

DEFAULT_ACTION_TIMEOUT = 10000  # ms
DEFAULT_BROWSER_TIMEOUT = 30000  # ms
DEFAULT_TEST_TIMEOUT = 120000  # ms，仅供参考，由调用方负责执行
HOVER_SETTLE_MS = 500
TEXT_TRUNCATE_LENGTH = 100
ELEMENT_LOOKUP_TIMEOUT = 2000  # ms，查询可能不存在的元素时使用
SCREENSHOT_RETENTION_DAYS = 7
DEFAULT_EVIDENCE_DIR = "./evidence"

BROWSER_TYPES = ("chromium", "firefox", "webkit")


@dataclass
class Viewport:
    """视口尺寸（CSS 像素）"""
    width: int
    height: int
    device_scale_factor: Optional[float] = None

    def as_playwright(self) -> dict:
        return {"width": self.width, "height": self.height}

    @classmethod
    def parse(cls, value: str) -> "Viewport":
        """解析 ``宽x高`` 格式（如 ``1280x720``）"""
        width, _, height = value.lower().partition("x")
        return cls(width=int(width), height=int(height))


DEFAULT_VIEWPORT = Viewport(width=1920, height=1080)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BrowserConfig:
    """浏览器启动与 context 创建的配置"""
    browser_type: str = "chromium"
    headless: bool = True
    viewport: Viewport = field(default_factory=lambda: Viewport(DEFAULT_VIEWPORT.width, DEFAULT_VIEWPORT.height))
    timeout: int = DEFAULT_BROWSER_TIMEOUT
    record_video: bool = False
    record_har: bool = False
    video_dir: str = "./test-videos"
    har_path: str = "./test.har"

    def __post_init__(self):
        if self.browser_type not in BROWSER_TYPES:
            raise ValidationError(f"Unsupported browser type: {self.browser_type}")

    @classmethod
    def from_env(cls) -> "BrowserConfig":
        """从 ``UIVERIFY_*`` 环境变量（以及 ``.env`` 文件）构建配置"""
        load_dotenv()
        config = cls(
            browser_type=os.getenv("UIVERIFY_BROWSER", "chromium"),
            headless=_env_flag("UIVERIFY_HEADLESS", True),
            timeout=int(os.getenv("UIVERIFY_TIMEOUT_MS", DEFAULT_BROWSER_TIMEOUT)),
            record_video=_env_flag("UIVERIFY_RECORD_VIDEO", False),
            record_har=_env_flag("UIVERIFY_RECORD_HAR", False),
        )
        viewport = os.getenv("UIVERIFY_VIEWPORT")
        if viewport:
            config.viewport = Viewport.parse(viewport)
        return config


def evidence_dir_from_env() -> Path:
    load_dotenv()
    return Path(os.getenv("UIVERIFY_EVIDENCE_DIR", DEFAULT_EVIDENCE_DIR))


# (x, y, width, height)，单位为图像像素
Region = Tuple[int, int, int, int]


@dataclass
class VisualDiffConfig:
    """像素对比设置

    threshold: 单通道差值（0-255）不超过该值的像素视为未变化
    alpha: 差异图中底图（变化后截图）的不透明度（0-1）
    ignore_regions: 不参与对比的矩形区域
    """
    threshold: int = 0
    alpha: float = 0.1
    diff_color: Tuple[int, int, int] = (255, 0, 0)
    ignore_regions: List[Region] = field(default_factory=list)
    write_diff_image: bool = True

    def __post_init__(self):
        if not 0 <= self.threshold <= 255:
            raise ValidationError("threshold must be between 0 and 255")
        if not 0.0 <= self.alpha <= 1.0:
            raise ValidationError("alpha must be between 0 and 1")

"""视觉模块：按阶段标记的截图、视觉对比与过期清理"""

import json
import logging
import re
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from playwright.async_api import Page

from .config import (
    DEFAULT_VIEWPORT,
    ELEMENT_LOOKUP_TIMEOUT,
    SCREENSHOT_RETENTION_DAYS,
    VisualDiffConfig,
    Viewport,
)
from .errors import ElementHiddenError, ElementNotFoundError
from .imagediff import compare_images, file_digest, write_diff_image
from .models import (
    CleanupResult,
    ConsistencyResult,
    ScreenshotMetadata,
    ScreenshotPhase,
    VisualDiffResult,
)

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def _safe(value: str, limit: int = 50) -> str:
    return _UNSAFE.sub("_", value)[:limit]


class VisualVerifier:
    """
    视觉验证器：采集整页与元素截图，并按测试阶段标记。

    内存中的登记表（路径 -> ScreenshotMetadata）只属于当前实例，
    视觉对比与过期清理都以它为准。
    """

    def __init__(self, screenshots_dir: Union[str, Path]):
        self.screenshots_dir = Path(screenshots_dir)
        self._screenshots: Dict[str, ScreenshotMetadata] = {}

    def _reserve(self, page: Page, stem: str, phase: ScreenshotPhase,
                 action_id: Optional[str], selector: Optional[str]) -> Path:
        """生成唯一的 ``{stem}-{millis}.png`` 路径，并在写文件前先登记"""
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        path = self.screenshots_dir / f"{stem}-{stamp}.png"
        while str(path) in self._screenshots or path.exists():
            stamp += 1
            path = self.screenshots_dir / f"{stem}-{stamp}.png"

        self._screenshots[str(path)] = ScreenshotMetadata(
            timestamp=datetime.now(),
            url=page.url,
            viewport=self._viewport(page),
            phase=phase,
            action_id=action_id,
            selector=selector,
        )
        return path

    @staticmethod
    def _viewport(page: Page) -> Viewport:
        size = page.viewport_size
        if not size:
            return Viewport(DEFAULT_VIEWPORT.width, DEFAULT_VIEWPORT.height)
        return Viewport(width=size["width"], height=size["height"])

    async def capture_full_page(self, page: Page, phase: ScreenshotPhase = ScreenshotPhase.FINAL,
                                action_id: Optional[str] = None) -> str:
        phase = ScreenshotPhase(phase)
        stem = f"{phase.value}-fullpage" + (f"-{_safe(action_id)}" if action_id else "")
        path = self._reserve(page, stem, phase, action_id, None)
        try:
            await page.screenshot(path=str(path), full_page=True)
        except Exception as e:
            self._screenshots.pop(str(path), None)
            logger.error("Failed to capture full page (%s): %s", phase.value, e)
            raise

        logger.debug("Full page screenshot captured: %s", path)
        return str(path)

    async def capture_element(self, page: Page, selector: str, phase: ScreenshotPhase = ScreenshotPhase.AFTER_ACTION,
                              action_id: Optional[str] = None) -> str:
        """
        截取单个元素的截图。
        没有匹配元素时抛出 ElementNotFoundError，元素没有边界框时抛出 ElementHiddenError。
        """
        phase = ScreenshotPhase(phase)
        if await page.locator(selector).count() == 0:
            raise ElementNotFoundError(selector, "not found")

        locator = page.locator(selector).first
        try:
            box = await locator.bounding_box(timeout=ELEMENT_LOOKUP_TIMEOUT)
        except Exception:
            box = None
        if not box:
            raise ElementHiddenError(selector)

        stem = f"{phase.value}-element-{_safe(selector)}" + (f"-{_safe(action_id)}" if action_id else "")
        path = self._reserve(page, stem, phase, action_id, selector)
        try:
            await locator.screenshot(path=str(path))
        except Exception as e:
            self._screenshots.pop(str(path), None)
            logger.error("Failed to capture element %s: %s", selector, e)
            raise

        logger.debug("Element screenshot captured: %s", path)
        return str(path)

    async def capture_elements(self, page: Page, selectors: List[str],
                               phase: ScreenshotPhase = ScreenshotPhase.AFTER_ACTION,
                               action_id: Optional[str] = None) -> Dict[str, str]:
        """尽力截取；失败的选择器记录日志后跳过"""
        results = {}
        for selector in selectors:
            try:
                results[selector] = await self.capture_element(page, selector, phase, action_id)
            except Exception as e:
                logger.warning("Failed to capture element %s: %s", selector, e)
        return results

    def generate_visual_diff(self, before_path: Union[str, Path], after_path: Union[str, Path],
                             config: Optional[VisualDiffConfig] = None) -> VisualDiffResult:
        config = config or VisualDiffConfig()
        before_path, after_path = Path(before_path), Path(after_path)
        logger.debug("Generating visual diff %s -> %s", before_path.name, after_path.name)

        if file_digest(before_path) == file_digest(after_path):
            return VisualDiffResult(identical=True, percent_different=0.0, pixels_changed=0)

        diff = compare_images(before_path, after_path, config)
        result = VisualDiffResult(
            identical=diff.pixels_changed == 0,
            percent_different=diff.percent_different,
            pixels_changed=diff.pixels_changed,
            total_pixels=diff.total_pixels,
        )
        if not result.identical and config.write_diff_image:
            diff_path = self._unique_diff_path(after_path)
            result.diff_path = write_diff_image(diff, diff_path, config)

        logger.debug("Visual diff: %.2f%% different (%d px)", result.percent_different, result.pixels_changed)
        return result

    def _unique_diff_path(self, after_path: Path) -> Path:
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        path = self.screenshots_dir / f"diff-{after_path.stem}.png"
        n = 1
        while path.exists():
            path = self.screenshots_dir / f"diff-{after_path.stem}-{n}.png"
            n += 1
        return path

    async def verify_visual_consistency(self, page: Page, selectors: List[str]) -> ConsistencyResult:
        """所有选择器当前都可见时才算一致"""
        visible, hidden = [], []
        for selector in selectors:
            try:
                shown = await page.locator(selector).first.is_visible()
            except Exception:
                shown = False
            (visible if shown else hidden).append(selector)

        logger.debug("Visual consistency: %d visible, %d hidden", len(visible), len(hidden))
        return ConsistencyResult(consistent=not hidden, visible_elements=visible, hidden_elements=hidden)

    def get_screenshots(self) -> Dict[str, ScreenshotMetadata]:
        return dict(self._screenshots)

    def get_screenshots_by_phase(self, phase: ScreenshotPhase) -> List[Tuple[str, ScreenshotMetadata]]:
        phase = ScreenshotPhase(phase)
        return [(path, meta) for path, meta in self._screenshots.items() if meta.phase is phase]

    def clear_screenshots(self) -> None:
        self._screenshots.clear()

    def save_metadata(self, file_path: Union[str, Path]) -> str:
        """将截图元数据以 JSON 写在截图旁边"""
        metadata = self._screenshots.get(str(file_path))
        if metadata is None:
            raise KeyError(f"No metadata found for screenshot: {file_path}")

        sidecar = Path(file_path).with_suffix(".json")
        sidecar.write_text(json.dumps({
            "timestamp": metadata.timestamp.isoformat(),
            "url": metadata.url,
            "viewport": {"width": metadata.viewport.width, "height": metadata.viewport.height},
            "phase": metadata.phase.value,
            "actionId": metadata.action_id,
            "selector": metadata.selector,
        }, indent=2), encoding="utf-8")
        return str(sidecar)

    def get_screenshot_size(self, file_path: Union[str, Path]) -> int:
        try:
            return Path(file_path).stat().st_size
        except OSError as e:
            logger.warning("Could not get screenshot size of %s: %s", file_path, e)
            return 0

    def cleanup_old_screenshots(self, retention_days: float = SCREENSHOT_RETENTION_DAYS) -> CleanupResult:
        """删除超过保留期限的已登记截图"""
        cutoff = datetime.now() - timedelta(days=retention_days)
        cleaned = failed = 0
        for path, metadata in list(self._screenshots.items()):
            if metadata.timestamp >= cutoff:
                continue
            try:
                Path(path).unlink()
            except OSError as e:
                failed += 1
                logger.warning("Failed to delete old screenshot %s: %s", path, e)
                continue
            del self._screenshots[path]
            cleaned += 1

        logger.info("Screenshot cleanup: %d removed, %d failed (retention %s days)", cleaned, failed, retention_days)
        return CleanupResult(cleaned=cleaned, failed_count=failed)

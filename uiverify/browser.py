"""浏览器模块：启动浏览器，每个页面独立 context，保证资源释放"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import BrowserConfig, Viewport
from .errors import BrowserError

logger = logging.getLogger(__name__)


@dataclass
class BrowserStatus:
    browser_open: bool
    context_open: bool
    page_count: int


class BrowserManager:
    """
    管理 Playwright 浏览器以及分配给测试运行的所有页面。

    每个页面拥有独立的 BrowserContext，并发运行之间不共享 cookie 与存储。
    页面注册表由锁保护，可在并发任务中创建和关闭页面。
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._pages: Dict[str, Tuple[BrowserContext, Page]] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "BrowserManager":
        await self.launch_browser()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cleanup()

    async def launch_browser(self) -> Browser:
        async with self._lock:
            return await self._launch()

    async def _launch(self) -> Browser:
        if self._browser is not None:
            return self._browser

        logger.debug("Launching %s (headless=%s)", self.config.browser_type, self.config.headless)
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            browser_type = getattr(self._playwright, self.config.browser_type)
            self._browser = await browser_type.launch(headless=self.config.headless)
        except Exception as e:
            logger.error("Failed to launch browser: %s", e)
            raise BrowserError(f"Failed to launch {self.config.browser_type}: {e}") from e

        logger.info("Browser launched (%s)", self.config.browser_type)
        return self._browser

    def _context_options(self) -> dict:
        viewport = self.config.viewport
        options = {"viewport": viewport.as_playwright(), "color_scheme": "light"}
        if viewport.device_scale_factor:
            options["device_scale_factor"] = viewport.device_scale_factor
        if self.config.record_video:
            options["record_video_dir"] = self.config.video_dir
        if self.config.record_har:
            options["record_har_path"] = self.config.har_path
        return options

    async def create_page(self, page_id: Optional[str] = None) -> Page:
        """在新的 context 中创建页面并登记"""
        async with self._lock:
            browser = await self._launch()
            page_id = page_id or f"page-{uuid.uuid4().hex[:12]}"
            logger.debug("Creating page %s", page_id)
            try:
                context = await browser.new_context(**self._context_options())
            except Exception as e:
                logger.error("Failed to create context for %s: %s", page_id, e)
                raise BrowserError(f"Failed to create page: {e}") from e
            try:
                page = await context.new_page()
            except Exception as e:
                logger.error("Failed to create page %s: %s", page_id, e)
                await self._close_context(context, page_id)
                raise BrowserError(f"Failed to create page: {e}") from e

            if self.config.timeout:
                page.set_default_timeout(self.config.timeout)
                page.set_default_navigation_timeout(self.config.timeout)

            self._pages[page_id] = (context, page)
            return page

    def get_page(self, page_id: str) -> Optional[Page]:
        entry = self._pages.get(page_id)
        return entry[1] if entry else None

    def _find_id(self, page: Union[Page, str]) -> Optional[str]:
        if isinstance(page, str):
            return page if page in self._pages else None
        for page_id, (_, registered) in self._pages.items():
            if registered is page:
                return page_id
        return None

    async def set_viewport(self, page: Page, viewport: Viewport) -> None:
        await page.set_viewport_size(viewport.as_playwright())
        if viewport.device_scale_factor:
            # 缩放比例在创建 context 时就已固定
            logger.warning("Device scale factor changes require context recreation")
        logger.debug("Viewport set to %sx%s", viewport.width, viewport.height)

    async def close_page(self, page: Union[Page, str]) -> None:
        """关闭页面及其 context；失败时抛出异常，由调用方记录"""
        async with self._lock:
            page_id = self._find_id(page)
            if page_id is None:
                return
            context, handle = self._pages.pop(page_id)
        try:
            await handle.close()
        except Exception as e:
            logger.error("Failed to close page %s: %s", page_id, e)
            raise
        finally:
            await self._close_context(context, page_id)
        logger.debug("Page %s closed", page_id)

    async def _close_context(self, context: BrowserContext, page_id: str) -> None:
        try:
            await context.close()
        except Exception as e:
            logger.warning("Failed to close context of %s: %s", page_id, e)

    async def close_browser(self) -> None:
        async with self._lock:
            pages = list(self._pages.items())
            self._pages.clear()
            for page_id, (context, _) in pages:
                await context.close()
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                logger.info("Browser closed")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def cleanup(self) -> None:
        """释放全部资源；单项失败只记录日志，不抛出"""
        logger.info("Starting browser cleanup")
        async with self._lock:
            pages = list(self._pages.items())
            self._pages.clear()
            for page_id, (context, page) in pages:
                try:
                    await page.close()
                except Exception as e:
                    logger.warning("Page cleanup failed for %s: %s", page_id, e)
                await self._close_context(context, page_id)

            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.warning("Browser cleanup failed: %s", e)
                self._browser = None

            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning("Playwright shutdown failed: %s", e)
                self._playwright = None
        logger.info("Browser cleanup completed")

    def get_status(self) -> BrowserStatus:
        return BrowserStatus(
            browser_open=self._browser is not None,
            context_open=bool(self._pages),
            page_count=len(self._pages),
        )

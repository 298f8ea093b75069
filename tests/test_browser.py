"""
Unit tests for the browser lifecycle manager, with Playwright replaced by fakes.
"""
import asyncio

import pytest

from conftest import FakePage
from uiverify import browser as browser_module
from uiverify.browser import BrowserManager
from uiverify.config import BrowserConfig, Viewport
from uiverify.errors import BrowserError


class _Context:
    def __init__(self, options, fail_pages=False):
        self.options = options
        self.fail_pages = fail_pages
        self.pages = []
        self.closed = False

    async def new_page(self):
        if self.fail_pages:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage()
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class _Browser:
    def __init__(self):
        self.contexts = []
        self.closed = False
        self.fail_pages = False

    async def new_context(self, **options):
        context = _Context(options, self.fail_pages)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class _BrowserType:
    def __init__(self, fail=False):
        self.fail = fail
        self.launches = []

    async def launch(self, headless=True):
        if self.fail:
            raise RuntimeError("Executable doesn't exist")
        self.launches.append(headless)
        return _Browser()


class _Playwright:
    def __init__(self, fail=False):
        self.chromium = _BrowserType(fail)
        self.firefox = _BrowserType(fail)
        self.stopped = False

    async def stop(self):
        self.stopped = True


@pytest.fixture
def playwright(monkeypatch):
    instance = _Playwright()

    class _Starter:
        async def start(self):
            return instance

    monkeypatch.setattr(browser_module, "async_playwright", lambda: _Starter())
    return instance


class TestLaunch:

    async def test_launch_is_idempotent(self, playwright):
        manager = BrowserManager()
        first = await manager.launch_browser()
        second = await manager.launch_browser()
        assert first is second
        assert playwright.chromium.launches == [True]

    async def test_browser_type_and_headless(self, playwright):
        manager = BrowserManager(BrowserConfig(browser_type="firefox", headless=False))
        await manager.launch_browser()
        assert playwright.firefox.launches == [False]
        assert playwright.chromium.launches == []

    async def test_launch_failure(self, monkeypatch):
        class _Starter:
            async def start(self):
                return _Playwright(fail=True)

        monkeypatch.setattr(browser_module, "async_playwright", lambda: _Starter())
        with pytest.raises(BrowserError, match="Failed to launch chromium"):
            await BrowserManager().launch_browser()


class TestPages:

    async def test_each_page_gets_its_own_context(self, playwright):
        manager = BrowserManager()
        a = await manager.create_page()
        b = await manager.create_page()
        assert a is not b
        browser = manager._browser
        assert len(browser.contexts) == 2
        assert browser.contexts[0].options["viewport"] == {"width": 1920, "height": 1080}
        assert ("set_default_timeout", 30000) in a.calls
        assert manager.get_status().page_count == 2

    async def test_context_options(self, playwright):
        config = BrowserConfig(viewport=Viewport(800, 600, 2.0), record_video=True, record_har=True)
        manager = BrowserManager(config)
        await manager.create_page()
        options = manager._browser.contexts[0].options
        assert options["device_scale_factor"] == 2.0
        assert options["record_video_dir"] == "./test-videos"
        assert options["record_har_path"] == "./test.har"

    async def test_named_page(self, playwright):
        manager = BrowserManager()
        page = await manager.create_page("checkout")
        assert manager.get_page("checkout") is page
        assert manager.get_page("missing") is None

    async def test_close_page_closes_context(self, playwright):
        manager = BrowserManager()
        page = await manager.create_page()
        await manager.close_page(page)
        assert page.closed
        assert manager._browser.contexts[0].closed
        assert manager.get_status().page_count == 0
        # unknown pages are ignored
        await manager.close_page(page)

    async def test_failed_page_creation_closes_context(self, playwright):
        manager = BrowserManager()
        await manager.launch_browser()
        manager._browser.fail_pages = True
        with pytest.raises(BrowserError, match="Failed to create page"):
            await manager.create_page()
        assert manager._browser.contexts[0].closed
        assert manager.get_status().page_count == 0

    async def test_close_page_failure_still_closes_context(self, playwright):
        manager = BrowserManager()
        page = await manager.create_page()

        async def broken_close():
            raise RuntimeError("Target crashed")

        page.close = broken_close
        with pytest.raises(RuntimeError, match="Target crashed"):
            await manager.close_page(page)
        assert manager._browser.contexts[0].closed
        assert manager.get_status().page_count == 0

    async def test_concurrent_create_and_close(self, playwright):
        manager = BrowserManager()
        pages = await asyncio.gather(*(manager.create_page() for _ in range(5)))
        assert manager.get_status().page_count == 5
        assert playwright.chromium.launches == [True]
        await asyncio.gather(*(manager.close_page(p) for p in pages))
        assert manager.get_status().page_count == 0

    async def test_set_viewport(self, playwright):
        manager = BrowserManager()
        page = await manager.create_page()
        await manager.set_viewport(page, Viewport(375, 812))
        assert page.viewport_size == {"width": 375, "height": 812}


class TestCleanup:

    async def test_cleanup_closes_everything(self, playwright):
        manager = BrowserManager()
        await manager.create_page()
        browser = manager._browser
        await manager.cleanup()
        assert browser.closed
        assert playwright.stopped
        status = manager.get_status()
        assert not status.browser_open and not status.context_open

    async def test_cleanup_tolerates_failures(self, playwright):
        manager = BrowserManager()
        page = await manager.create_page()

        async def broken_close():
            raise RuntimeError("already closed")

        context = manager._browser.contexts[0]
        page.close = broken_close
        await manager.cleanup()
        assert manager.get_status().page_count == 0
        assert context.closed

    async def test_context_manager(self, playwright):
        async with BrowserManager() as manager:
            assert manager.get_status().browser_open
        assert not manager.get_status().browser_open

"""等待模块：动作与执行器共用的阻塞等待原语"""

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Union

from playwright.async_api import Page

from .config import DEFAULT_ACTION_TIMEOUT
from .errors import WaitTimeoutError
from .models import WaitCondition, WaitType

logger = logging.getLogger(__name__)

Predicate = Callable[[], Union[bool, Awaitable[bool]]]


class WaitEvaluator:
    """阻塞直到页面满足条件，或条件超时"""

    async def wait(self, page: Page, condition: WaitCondition) -> None:
        timeout = condition.timeout or DEFAULT_ACTION_TIMEOUT
        logger.debug("Waiting for %s condition (timeout=%sms)", condition.type.value, timeout)
        try:
            if condition.type is WaitType.ELEMENT:
                await self.wait_for_element(page, condition.selector, timeout=timeout)
            elif condition.type is WaitType.URL:
                await self.wait_for_url(page, condition.url_pattern, timeout=timeout)
            elif condition.type is WaitType.NETWORKIDLE:
                await self.wait_for_network_idle(page, timeout=timeout)
            elif condition.type is WaitType.LOAD:
                await self.wait_for_load(page, timeout=timeout)
            elif condition.type is WaitType.FUNCTION:
                await page.wait_for_function(condition.expression, timeout=timeout)
        except Exception as e:
            raise WaitTimeoutError(f"Wait condition failed ({condition.type.value}): {e}") from e

    async def wait_for_element(self, page: Page, selector: str, state: str = "visible",
                               timeout: int = DEFAULT_ACTION_TIMEOUT) -> None:
        await page.locator(selector).first.wait_for(state=state, timeout=timeout)

    async def wait_for_url(self, page: Page, pattern: str, timeout: int = DEFAULT_ACTION_TIMEOUT) -> None:
        """``pattern`` 为 Playwright URL 通配（``**/dashboard``）或完整 URL"""
        await page.wait_for_url(pattern, timeout=timeout)

    async def wait_for_network_idle(self, page: Page, timeout: int = DEFAULT_ACTION_TIMEOUT) -> None:
        await page.wait_for_load_state("networkidle", timeout=timeout)

    async def wait_for_load(self, page: Page, timeout: int = DEFAULT_ACTION_TIMEOUT) -> None:
        await page.wait_for_load_state("load", timeout=timeout)

    async def wait_for_predicate(self, predicate: Predicate, timeout_ms: int = DEFAULT_ACTION_TIMEOUT,
                                 poll_interval_ms: int = 100) -> None:
        """
        轮询 Python 谓词（同步或异步）直到返回 True。
        谓词抛出的异常视为条件尚未满足。
        """
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            try:
                outcome = predicate()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if outcome:
                    return
            except Exception as e:
                logger.debug("Predicate raised while polling: %s", e)

            if time.monotonic() > deadline:
                raise WaitTimeoutError(f"Condition timeout after {timeout_ms}ms")
            await asyncio.sleep(poll_interval_ms / 1000)

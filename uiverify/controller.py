"""执行模块：在页面上执行单个用户动作"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Locator, Page

from .config import HOVER_SETTLE_MS
from .errors import ActionError, NotClickableError
from .models import ActionResult, ActionType, UIAction
from .perception import INTERACTIVITY_SCRIPT
from .waits import WaitEvaluator

logger = logging.getLogger(__name__)

Handler = Callable[[Page, UIAction], Awaitable[None]]


def split_chord(key: str) -> List[str]:
    """
    拆分 "+" 连接的组合键："Control+Shift+A" -> ["Control", "Shift", "A"]。
    加号本身作为按键保留："+" -> ["+"]，"Shift++" -> ["Shift", "+"]。
    """
    if key == "+":
        return ["+"]
    if key.endswith("++"):
        return key[:-2].split("+") + ["+"]
    return key.split("+")


class ActionExecutor:
    """
    执行 click/type/fill/scroll/hover/drag/keyboard/select/check 等动作，
    并遵循动作自带的等待条件。动作失败只返回失败结果，不抛出异常，
    执行器会继续后续步骤，证据中保留完整的操作序列。
    """

    def __init__(self, waits: Optional[WaitEvaluator] = None, hover_settle_ms: int = HOVER_SETTLE_MS):
        self.waits = waits or WaitEvaluator()
        self.hover_settle_ms = hover_settle_ms
        self._handlers: Dict[ActionType, Handler] = {
            ActionType.CLICK: self._click,
            ActionType.TYPE: self._type,
            ActionType.FILL: self._fill,
            ActionType.SCROLL: self._scroll,
            ActionType.HOVER: self._hover,
            ActionType.DRAG: self._drag,
            ActionType.KEYBOARD: self._keyboard,
            ActionType.PRESS: self._keyboard,
            ActionType.SELECT: self._select,
            ActionType.CHECK: self._check,
            ActionType.UNCHECK: self._uncheck,
        }

    async def execute(self, page: Page, action: UIAction) -> ActionResult:
        start = time.monotonic()
        logger.debug("Executing %s on %s", action.type.value, action.selector)
        try:
            if action.wait_for:
                await self.waits.wait(page, action.wait_for)

            await self._handlers[action.type](page, action)

            if action.wait_after:
                await self.waits.wait(page, action.wait_after)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error("Action %s failed (%s, %s): %s", action.id, action.type.value, action.selector, e)
            return ActionResult(success=False, duration_ms=duration_ms, error=str(e))

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Action %s succeeded in %dms", action.id, duration_ms)
        return ActionResult(success=True, duration_ms=duration_ms)

    async def _visible(self, page: Page, selector: str, timeout: int) -> Locator:
        locator = page.locator(selector).first
        await locator.wait_for(state="visible", timeout=timeout)
        return locator

    async def _click(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.scroll_into_view_if_needed(timeout=action.timeout)

        hit = await locator.evaluate(INTERACTIVITY_SCRIPT)
        if hit["styleHidden"]:
            raise NotClickableError(action.selector, "hidden by CSS")
        if not hit["sized"]:
            raise NotClickableError(action.selector, "zero-size bounding box")
        if hit["disabled"]:
            raise NotClickableError(action.selector, "disabled")
        if not hit["clickable"]:
            raise NotClickableError(action.selector, "covered by another element")

        await locator.click(timeout=action.timeout)

    async def _type(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.fill("", timeout=action.timeout)
        if action.delay:
            # 逐字输入，适配防抖输入框
            for char in action.value:
                await locator.press_sequentially(char, delay=action.delay, timeout=action.timeout)
        else:
            await locator.press_sequentially(action.value, timeout=action.timeout)

    async def _fill(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.fill(action.value, timeout=action.timeout)

    async def _scroll(self, page: Page, action: UIAction) -> None:
        target = action.selector.strip()
        try:
            pixels = int(target)
        except ValueError:
            pixels = None

        if pixels is not None:
            await page.evaluate("(pixels) => window.scrollBy(0, pixels)", pixels)
        elif target == "bottom":
            await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        elif target == "top":
            await page.evaluate("() => window.scrollTo(0, 0)")
        else:
            await page.locator(target).first.scroll_into_view_if_needed(timeout=action.timeout)

    async def _hover(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.hover(timeout=action.timeout)
        # 等待提示框和下拉菜单动画结束
        await page.wait_for_timeout(self.hover_settle_ms)

    async def _drag(self, page: Page, action: UIAction) -> None:
        source = await self._visible(page, action.selector, action.timeout)
        target = await self._visible(page, action.target_selector, action.timeout)

        if not await source.bounding_box() or not await target.bounding_box():
            raise ActionError("Could not get bounding boxes for drag action")

        await source.drag_to(target, timeout=action.timeout)

    async def _keyboard(self, page: Page, action: UIAction) -> None:
        if action.selector:
            await page.locator(action.selector).first.focus(timeout=action.timeout)

        keys = split_chord(action.key)
        if action.delay and len(keys) > 1:
            *modifiers, final = keys
            pressed = []
            try:
                for modifier in modifiers:
                    await page.keyboard.down(modifier)
                    pressed.append(modifier)
                    await asyncio.sleep(action.delay / 1000)
                await page.keyboard.press(final, delay=action.delay)
            finally:
                # 失败时也要释放已按下的修饰键
                for modifier in reversed(pressed):
                    await page.keyboard.up(modifier)
        else:
            await page.keyboard.press(action.key, delay=action.delay or 0)

    async def _select(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.select_option(action.value, timeout=action.timeout)

    async def _check(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.check(timeout=action.timeout)

    async def _uncheck(self, page: Page, action: UIAction) -> None:
        locator = await self._visible(page, action.selector, action.timeout)
        await locator.uncheck(timeout=action.timeout)

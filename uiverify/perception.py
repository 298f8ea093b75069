"""感知模块：只读检查渲染后的 DOM、CSS 与无障碍状态"""

import logging
import re
import time
from pathlib import Path
from typing import Optional, Union

from playwright.async_api import Page

from .config import ELEMENT_LOOKUP_TIMEOUT, TEXT_TRUNCATE_LENGTH
from .models import (
    AccessibilityReport,
    BoundingBox,
    CheckResult,
    ElementState,
    InteractivityState,
    VisibilityState,
)

logger = logging.getLogger(__name__)

# 中心点命中检测，controller.py 的点击前检查也使用它
INTERACTIVITY_SCRIPT = """
(el) => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const sized = rect.width > 0 && rect.height > 0;
    const styleHidden = style.display === 'none' || style.visibility === 'hidden';

    let top = null;
    if (sized && !styleHidden) {
        top = document.elementFromPoint(rect.left + rect.width / 2, rect.top + rect.height / 2);
    }
    const clickable = !!top && (top === el || el.contains(top));

    const disabled = !!el.disabled ||
        el.getAttribute('aria-disabled') === 'true' ||
        el.getAttribute('disabled') !== null;

    const inViewport = rect.top >= 0 && rect.left >= 0 &&
        rect.bottom <= window.innerHeight && rect.right <= window.innerWidth;

    return {
        clickable,
        disabled,
        covered: sized && !styleHidden && !!top && !clickable,
        inViewport,
        sized,
        styleHidden,
    };
}
"""

VISIBILITY_SCRIPT = """
(el) => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    return {
        visible: rect.width > 0 && rect.height > 0,
        display: style.display,
        visibility: style.visibility,
        opacity: parseFloat(style.opacity),
        hidden: !!el.hidden || el.hasAttribute('hidden'),
    };
}
"""

CSS_PROPERTY_SCRIPT = "(el, prop) => window.getComputedStyle(el).getPropertyValue(prop)"

ACCESSIBILITY_SCRIPT = """
(el) => {
    const style = window.getComputedStyle(el);
    const ariaLabel = el.getAttribute('aria-label');
    const role = el.getAttribute('role');
    const labelledBy = el.getAttribute('aria-labelledby');
    const describedBy = el.getAttribute('aria-describedby');
    const issues = [];

    if (el.tagName === 'IMG' && !el.hasAttribute('alt') && !ariaLabel && !labelledBy) {
        issues.push('Image missing alt text');
    }
    if (style.display === 'none' && el.getAttribute('aria-hidden') !== 'true') {
        issues.push('Hidden element missing aria-hidden');
    }
    if (el.tagName === 'BUTTON' && !ariaLabel && !labelledBy && !(el.textContent || '').trim()) {
        issues.push('Button missing accessible label');
    }

    return {
        hasAriaLabel: !!ariaLabel,
        hasAriaRole: !!role,
        ariaLabels: {
            label: ariaLabel || '',
            role: role || '',
            labelledBy: labelledBy || '',
            describedBy: describedBy || '',
        },
        issues,
    };
}
"""

TEXT_MODES = ("exact", "contains", "regex")


class StateVerifier:
    """
    状态验证器：检查用户真正看到的内容，包括可见性、可交互性、CSS、文本、
    布局与无障碍属性。所有查询都容忍元素缺失，返回保守的
    "不可见 / 不可交互" 结果，而不是抛出异常。
    """

    def __init__(self, dom_snapshots_dir: Union[str, Path], lookup_timeout: int = ELEMENT_LOOKUP_TIMEOUT):
        self.dom_snapshots_dir = Path(dom_snapshots_dir)
        self.lookup_timeout = lookup_timeout

    async def verify_element_visible(self, page: Page, selector: str) -> VisibilityState:
        try:
            raw = await page.locator(selector).first.evaluate(VISIBILITY_SCRIPT, timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Element not found for visibility check %s: %s", selector, e)
            return VisibilityState.not_found()

        state = VisibilityState(
            visible=bool(raw["visible"]),
            display=raw["display"],
            visibility=raw["visibility"],
            opacity=float(raw["opacity"]),
            hidden=bool(raw["hidden"]),
        )
        logger.debug("Visibility of %s: %s", selector, state.visible)
        return state

    async def verify_element_interactive(self, page: Page, selector: str) -> InteractivityState:
        try:
            raw = await page.locator(selector).first.evaluate(INTERACTIVITY_SCRIPT, timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Element not found for interactivity check %s: %s", selector, e)
            return InteractivityState.not_found()

        state = InteractivityState(
            clickable=bool(raw["clickable"]),
            disabled=bool(raw["disabled"]),
            covered=bool(raw["covered"]),
            in_viewport=bool(raw["inViewport"]),
        )
        logger.debug("Interactivity of %s: clickable=%s disabled=%s", selector, state.clickable, state.disabled)
        return state

    async def verify_css_property(self, page: Page, selector: str, prop: str, expected: str) -> CheckResult:
        expected = str(expected)
        try:
            actual = await page.locator(selector).first.evaluate(CSS_PROPERTY_SCRIPT, prop, timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to read CSS %s of %s: %s", prop, selector, e)
            return CheckResult(actual="", expected=expected, matches=False)

        actual = actual or ""
        matches = actual.strip() == expected.strip()
        logger.debug("CSS %s of %s: %r (expected %r)", prop, selector, actual, expected)
        return CheckResult(actual=actual, expected=expected, matches=matches)

    async def verify_text_content(self, page: Page, selector: str, expected: str,
                                  mode: str = "contains") -> CheckResult:
        """mode: exact（精确）| contains（包含）| regex（正则）"""
        if mode not in TEXT_MODES:
            raise ValueError(f"Unknown text match mode: {mode}")
        expected = str(expected)
        try:
            actual = await page.locator(selector).first.text_content(timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to read text of %s: %s", selector, e)
            return CheckResult(actual="", expected=expected, matches=False)

        if not actual:
            return CheckResult(actual="", expected=expected, matches=False)

        if mode == "exact":
            matches = actual == expected
        elif mode == "contains":
            matches = expected in actual
        else:
            matches = re.search(expected, actual) is not None

        return CheckResult(actual=actual[:TEXT_TRUNCATE_LENGTH], expected=expected, matches=matches)

    async def get_element_bounding_box(self, page: Page, selector: str) -> Optional[BoundingBox]:
        try:
            box = await page.locator(selector).first.bounding_box(timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to get bounding box of %s: %s", selector, e)
            return None
        if not box:
            return None

        visibility = await self.verify_element_visible(page, selector)
        interactivity = await self.verify_element_interactive(page, selector)
        return BoundingBox(
            x=box["x"],
            y=box["y"],
            width=box["width"],
            height=box["height"],
            visible=visibility.visible,
            interactive=interactivity.clickable and not interactivity.disabled,
        )

    async def verify_accessibility(self, page: Page, selector: str) -> AccessibilityReport:
        try:
            raw = await page.locator(selector).first.evaluate(ACCESSIBILITY_SCRIPT, timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to verify accessibility of %s: %s", selector, e)
            return AccessibilityReport(
                has_aria_label=False,
                has_aria_role=False,
                aria_labels={},
                issues=["Could not verify accessibility"],
            )

        report = AccessibilityReport(
            has_aria_label=bool(raw["hasAriaLabel"]),
            has_aria_role=bool(raw["hasAriaRole"]),
            aria_labels=dict(raw["ariaLabels"]),
            issues=list(raw["issues"]),
        )
        logger.debug("Accessibility of %s: %d issue(s)", selector, len(report.issues))
        return report

    async def count_elements(self, page: Page, selector: str) -> int:
        try:
            return await page.locator(selector).count()
        except Exception as e:
            logger.warning("Failed to count %s: %s", selector, e)
            return 0

    async def get_attribute(self, page: Page, selector: str, name: str) -> Optional[str]:
        try:
            return await page.locator(selector).first.get_attribute(name, timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to read attribute %s of %s: %s", name, selector, e)
            return None

    async def capture_dom_state(self, page: Page, phase: str = "final") -> str:
        """将整页 HTML 写入 ``dom-{phase}-{millis}.html``，返回文件路径"""
        self.dom_snapshots_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        path = self.dom_snapshots_dir / f"dom-{phase}-{stamp}.html"
        while path.exists():
            stamp += 1
            path = self.dom_snapshots_dir / f"dom-{phase}-{stamp}.html"

        html = await page.content()
        path.write_text(html, encoding="utf-8")
        logger.debug("DOM snapshot saved: %s", path)
        return str(path)

    async def get_element_state(self, page: Page, selector: str) -> ElementState:
        locator = page.locator(selector).first
        try:
            # 元素挂载到文档后才会返回
            text = await locator.text_content(timeout=self.lookup_timeout)
            html = await locator.inner_html(timeout=self.lookup_timeout)
        except Exception as e:
            logger.warning("Failed to get element state of %s: %s", selector, e)
            return ElementState(
                exists=False,
                visibility=VisibilityState.not_found(),
                interactivity=InteractivityState.not_found(),
            )

        return ElementState(
            exists=True,
            visibility=await self.verify_element_visible(page, selector),
            interactivity=await self.verify_element_interactive(page, selector),
            text=text or None,
            html=html or None,
        )

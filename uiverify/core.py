"""执行器核心类：串联生命周期、动作、验证与证据，得出单个测试结论"""

import asyncio
import logging
import re
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from playwright.async_api import Page

from .browser import BrowserManager, BrowserStatus
from .config import BrowserConfig, VisualDiffConfig
from .controller import ActionExecutor
from .models import (
    ExpectationEvidence,
    ExpectationResult,
    ExpectationType,
    FailureType,
    Operator,
    ScreenshotPhase,
    TestFailure,
    UIExpectation,
    UITestDefinition,
    UITestEvidence,
    UITestResult,
)
from .monitors import ConsoleMonitor, NetworkMonitor, Subscription
from .perception import StateVerifier
from .visual import VisualVerifier

logger = logging.getLogger(__name__)

# (actual, expected, passed)
Verdict = Tuple[Any, Any, bool]


@dataclass
class RunContext:
    """单次测试运行独占的全部状态，不在运行之间共享"""
    page: Page
    visual: VisualVerifier
    state: StateVerifier
    console: ConsoleMonitor
    network: NetworkMonitor
    evidence: UITestEvidence
    subscriptions: List[Subscription] = field(default_factory=list)
    baseline_screenshot: Optional[str] = None
    final_screenshot: Optional[str] = None


def _text_mode(operator: Optional[Operator]) -> str:
    if operator is Operator.EQUALS:
        return "exact"
    if operator is Operator.MATCHES:
        return "regex"
    return "contains"


class UITestExecutor:
    """
    UI 测试执行器，完整运行一个 UITestDefinition：

    准备 -> 导航 -> 基线采集 -> (截图, 执行, 截图)* ->
    最终采集 -> 验证期望 -> 异常断言 -> 结论 -> 清理

    只有准备和导航阶段的错误会中止运行，其余问题都记录在
    ``failures`` / ``expectation_results`` 中并体现在结论里。
    """

    def __init__(
        self,
        evidence_dir: Union[str, Path],
        browser_config: Optional[BrowserConfig] = None,
        browser_manager: Optional[BrowserManager] = None,
        diff_config: Optional[VisualDiffConfig] = None,
        expected_console_errors: Sequence[str] = (),
        ignored_request_urls: Sequence[str] = (),
    ):
        self.evidence_dir = Path(evidence_dir)
        self.screenshots_dir = self.evidence_dir / "screenshots"
        self.dom_snapshots_dir = self.evidence_dir / "dom-snapshots"
        self.browser_manager = browser_manager or BrowserManager(browser_config)
        self.actions = ActionExecutor()
        self.diff_config = diff_config or VisualDiffConfig()
        self.expected_console_errors = list(expected_console_errors)
        self.ignored_request_urls = list(ignored_request_urls)

        self._expectation_handlers: Dict[ExpectationType, Callable[[RunContext, UIExpectation], Awaitable[Verdict]]] = {
            ExpectationType.ELEMENT_VISIBLE: self._expect_element_visible,
            ExpectationType.ELEMENT_HIDDEN: self._expect_element_hidden,
            ExpectationType.ELEMENT_ENABLED: self._expect_element_enabled,
            ExpectationType.ELEMENT_DISABLED: self._expect_element_disabled,
            ExpectationType.TEXT_PRESENT: self._expect_text_present,
            ExpectationType.TEXT_ABSENT: self._expect_text_absent,
            ExpectationType.CSS_PROPERTY: self._expect_css_property,
            ExpectationType.ATTRIBUTE_VALUE: self._expect_attribute_value,
            ExpectationType.URL_CONTAINS: self._expect_url_contains,
            ExpectationType.CONSOLE_NO_ERRORS: self._expect_console_no_errors,
            ExpectationType.NETWORK_SUCCESS: self._expect_network_success,
            ExpectationType.ELEMENT_COUNT: self._expect_element_count,
            ExpectationType.VISUAL_DIFF: self._expect_visual_diff,
            ExpectationType.ACCESSIBILITY_VALID: self._expect_accessibility_valid,
        }

    async def __aenter__(self) -> "UITestExecutor":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cleanup()

    def _new_monitors(self) -> Tuple[ConsoleMonitor, NetworkMonitor]:
        console, network = ConsoleMonitor(), NetworkMonitor()
        for pattern in self.expected_console_errors:
            console.expect_error(pattern)
        for pattern in self.ignored_request_urls:
            network.ignore_url(pattern)
        return console, network

    async def execute_test(self, definition: UITestDefinition) -> UITestResult:
        """运行单个测试并收集完整证据，不抛出异常"""
        started = time.monotonic()
        logger.info("Starting UI test %s (%s)", definition.id, definition.name)

        now = datetime.now()
        result = UITestResult(
            test_id=definition.id,
            test_name=definition.name,
            started_at=now,
            completed_at=now,
            evidence=UITestEvidence(test_id=definition.id, test_name=definition.name),
        )
        console, network = self._new_monitors()
        run: Optional[RunContext] = None

        try:
            # 1. 准备
            page = await self.browser_manager.create_page()
            run = RunContext(
                page=page,
                visual=VisualVerifier(self.screenshots_dir),
                state=StateVerifier(self.dom_snapshots_dir),
                console=console,
                network=network,
                evidence=result.evidence,
            )
            run.subscriptions.append(console.attach_to_page(page))
            run.subscriptions.append(network.attach_to_page(page))
            if definition.viewport:
                await self.browser_manager.set_viewport(page, definition.viewport)

            # 2. 导航
            logger.debug("Navigating to %s", definition.url)
            await page.goto(definition.url, wait_until="networkidle")

            # 3. 基线证据
            run.baseline_screenshot = await run.visual.capture_full_page(page, ScreenshotPhase.BASELINE)
            result.evidence.screenshot_baseline = run.baseline_screenshot
            result.evidence.dom_snapshots["baseline"] = await run.state.capture_dom_state(page, "baseline")

            # 4. 按顺序执行动作
            for index, action in enumerate(definition.actions):
                await self._run_action(run, result, action, index)

            # 5. 最终证据
            run.final_screenshot = await run.visual.capture_full_page(page, ScreenshotPhase.FINAL)
            result.evidence.screenshots_final = run.final_screenshot
            result.evidence.dom_snapshots["final"] = await run.state.capture_dom_state(page, "final")

            # 6. 验证期望
            for expectation in definition.expectations:
                outcome = await self.verify_expectation(run, expectation)
                result.expectation_results.append(outcome)
                if not outcome.passed:
                    kind = "Critical expectation" if expectation.critical else "Expectation"
                    result.failures.append(TestFailure(
                        type=FailureType.EXPECTATION_FAILED,
                        expectation_id=expectation.id,
                        message=f"{kind} failed: {expectation.label()}",
                        critical=expectation.critical,
                        evidence=outcome.evidence.screenshot if outcome.evidence else None,
                    ))

            # 7. 异常断言，与声明的期望无关
            self._assert_anomalies(run, result)

            # 8-9. 结论与证据汇总
            result.passed = not any(f.critical for f in result.failures)
            result.partial_pass = result.passed and any(not e.passed for e in result.expectation_results)
            self._finalize_evidence(run, definition, result)

            logger.info(
                "UI test %s %s in %dms (%d actions, %d/%d expectations passed)",
                definition.id,
                result.status,
                int((time.monotonic() - started) * 1000),
                result.actions_executed,
                sum(1 for e in result.expectation_results if e.passed),
                len(result.expectation_results),
            )
        except Exception as e:
            result.passed = False
            result.partial_pass = False
            result.error_message = str(e) or e.__class__.__name__
            result.stack_trace = traceback.format_exc()
            result.evidence.console_logs = console.get_logs()
            result.evidence.network_activity = network.get_requests()
            result.evidence.actual_outcome = f"Run aborted: {result.error_message}"
            logger.error("UI test %s errored: %s", definition.id, result.error_message)
        finally:
            await self._cleanup_run(run, console, network)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.completed_at = datetime.now()
        return result

    async def _run_action(self, run: RunContext, result: UITestResult, action, index: int) -> None:
        key = action.id or f"action-{index + 1}"
        shots = {}
        try:
            if action.screenshot_before:
                shots["before"] = await run.visual.capture_full_page(run.page, ScreenshotPhase.BEFORE_ACTION, key)

            outcome = await self.actions.execute(run.page, action)
            if not outcome.success:
                result.failures.append(TestFailure(
                    type=FailureType.ACTION_FAILED,
                    action_id=action.id,
                    message=f"Action failed: {outcome.error}",
                    critical=False,
                ))

            if action.screenshot_after:
                shots["after"] = await run.visual.capture_full_page(run.page, ScreenshotPhase.AFTER_ACTION, key)
            logger.debug("Action %s done in %dms", key, outcome.duration_ms)
        except Exception as e:
            logger.error("Action %s raised: %s", key, e)
            result.failures.append(TestFailure(
                type=FailureType.ACTION_FAILED,
                action_id=action.id,
                message=f"Action exception: {e}",
                critical=True,
            ))
        finally:
            result.actions_executed += 1
            if shots:
                result.evidence.action_screenshots[key] = shots

    def _assert_anomalies(self, run: RunContext, result: UITestResult) -> None:
        console_check = run.console.assert_no_errors()
        if not console_check.passed:
            result.failures.append(TestFailure(
                type=FailureType.ACTION_FAILED,
                message=f"Console errors: {console_check.message}",
            ))
        network_check = run.network.assert_no_failed_requests()
        if not network_check.passed:
            result.failures.append(TestFailure(
                type=FailureType.ACTION_FAILED,
                message=f"Network failures: {network_check.message}",
            ))

    def _finalize_evidence(self, run: RunContext, definition: UITestDefinition, result: UITestResult) -> None:
        evidence = result.evidence
        evidence.console_logs = run.console.get_logs()
        evidence.network_activity = run.network.get_requests()
        evidence.expected_outcome = self.build_expected_outcome(definition)
        evidence.actual_outcome = self.build_actual_outcome(result)
        evidence.pass_fail = "pass" if result.passed else "fail"

    async def _cleanup_run(self, run: Optional[RunContext], console: ConsoleMonitor, network: NetworkMonitor) -> None:
        if run is not None:
            for subscription in run.subscriptions:
                subscription.detach()
            try:
                await self.browser_manager.close_page(run.page)
            except Exception as e:
                logger.warning("Failed to close page: %s", e)
        try:
            console.clear()
            network.clear()
        except Exception as e:
            logger.warning("Failed to clear monitors: %s", e)

    # ------------------------------------------------------------------
    # 期望验证
    # ------------------------------------------------------------------

    async def verify_expectation(self, run: RunContext, expectation: UIExpectation) -> ExpectationResult:
        """在当前页面上验证单个期望，不抛出异常"""
        result = ExpectationResult(
            type=expectation.type,
            expectation_id=expectation.id,
            description=expectation.description,
        )
        try:
            handler = self._expectation_handlers[expectation.type]
            result.actual_value, result.expected_value, result.passed = await handler(run, expectation)
            result.evidence = ExpectationEvidence(
                timestamp=datetime.now(),
                message="Expectation met" if result.passed else "Expectation not met",
                screenshot=run.final_screenshot,
            )
        except Exception as e:
            result.passed = False
            result.evidence = ExpectationEvidence(
                timestamp=datetime.now(),
                message=f"Verification error: {e}",
                screenshot=run.final_screenshot,
            )
            logger.error("Expectation %s could not be verified: %s", expectation.id, e)

        logger.debug("Expectation %s (%s): %s", expectation.id, expectation.type.value, result.passed)
        return result

    async def _expect_element_visible(self, run: RunContext, exp: UIExpectation) -> Verdict:
        visibility = await run.state.verify_element_visible(run.page, exp.selector)
        return visibility.visible, True, visibility.visible

    async def _expect_element_hidden(self, run: RunContext, exp: UIExpectation) -> Verdict:
        visibility = await run.state.verify_element_visible(run.page, exp.selector)
        return visibility.visible, False, not visibility.visible

    async def _expect_element_enabled(self, run: RunContext, exp: UIExpectation) -> Verdict:
        interactivity = await run.state.verify_element_interactive(run.page, exp.selector)
        return not interactivity.disabled, True, not interactivity.disabled

    async def _expect_element_disabled(self, run: RunContext, exp: UIExpectation) -> Verdict:
        state = await run.state.get_element_state(run.page, exp.selector)
        disabled = state.exists and state.interactivity.disabled
        return disabled, True, disabled

    async def _expect_text_present(self, run: RunContext, exp: UIExpectation) -> Verdict:
        check = await run.state.verify_text_content(
            run.page, exp.selector, exp.expected_value, _text_mode(exp.operator))
        return check.actual, check.expected, check.matches

    async def _expect_text_absent(self, run: RunContext, exp: UIExpectation) -> Verdict:
        check = await run.state.verify_text_content(
            run.page, exp.selector, exp.expected_value, _text_mode(exp.operator))
        return check.actual, check.expected, not check.matches

    async def _expect_css_property(self, run: RunContext, exp: UIExpectation) -> Verdict:
        check = await run.state.verify_css_property(run.page, exp.selector, exp.property, exp.expected_value)
        return check.actual, check.expected, check.matches

    async def _expect_attribute_value(self, run: RunContext, exp: UIExpectation) -> Verdict:
        actual = await run.state.get_attribute(run.page, exp.selector, exp.property)
        expected = str(exp.expected_value)
        if actual is None:
            return None, expected, False
        if exp.operator is Operator.CONTAINS:
            return actual, expected, expected in actual
        if exp.operator is Operator.MATCHES:
            return actual, expected, re.search(expected, actual) is not None
        return actual, expected, actual.strip() == expected.strip()

    async def _expect_url_contains(self, run: RunContext, exp: UIExpectation) -> Verdict:
        url = run.page.url
        expected = str(exp.expected_value)
        return url, expected, expected in url

    async def _expect_console_no_errors(self, run: RunContext, exp: UIExpectation) -> Verdict:
        outcome = run.console.assert_no_errors()
        return len(run.console.get_unexpected_errors()), 0, outcome.passed

    async def _expect_network_success(self, run: RunContext, exp: UIExpectation) -> Verdict:
        outcome = run.network.assert_no_failed_requests()
        return run.network.get_failed_request_count(), 0, outcome.passed

    async def _expect_element_count(self, run: RunContext, exp: UIExpectation) -> Verdict:
        count = await run.state.count_elements(run.page, exp.selector)
        expected = int(exp.expected_value)
        if exp.operator is Operator.GREATER:
            return count, expected, count > expected
        if exp.operator is Operator.LESS:
            return count, expected, count < expected
        return count, expected, count == expected

    async def _expect_visual_diff(self, run: RunContext, exp: UIExpectation) -> Verdict:
        """
        对比基线截图与最终截图。operator 为 "greater" 时要求变化比例大于
        ``tolerance``（百分比），否则要求变化比例不超过 ``tolerance``。
        """
        diff = await asyncio.to_thread(
            run.visual.generate_visual_diff, run.baseline_screenshot, run.final_screenshot, self.diff_config)
        if diff.diff_path:
            run.evidence.visual_diffs[exp.id or "baseline-final"] = diff.diff_path
        if exp.operator is Operator.GREATER:
            return diff.percent_different, f"> {exp.tolerance}%", diff.percent_different > exp.tolerance
        return diff.percent_different, f"<= {exp.tolerance}%", diff.percent_different <= exp.tolerance

    async def _expect_accessibility_valid(self, run: RunContext, exp: UIExpectation) -> Verdict:
        report = await run.state.verify_accessibility(run.page, exp.selector)
        return report.issues, [], not report.issues

    # ------------------------------------------------------------------
    # 结果摘要
    # ------------------------------------------------------------------

    @staticmethod
    def build_expected_outcome(definition: UITestDefinition) -> str:
        expectations = "; ".join(e.label() for e in definition.expectations)
        return f"All actions executed successfully and {expectations}" if expectations \
            else "All actions executed successfully"

    @staticmethod
    def build_actual_outcome(result: UITestResult) -> str:
        passed = sum(1 for e in result.expectation_results if e.passed)
        failures = f"{len(result.failures)} failure(s)" if result.failures else "No failures"
        return (
            f"Executed {result.actions_executed} actions, "
            f"{passed}/{len(result.expectation_results)} expectations passed, {failures}"
        )

    async def cleanup(self) -> None:
        await self.browser_manager.cleanup()

    def get_status(self) -> BrowserStatus:
        return self.browser_manager.get_status()

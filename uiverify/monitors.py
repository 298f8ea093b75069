"""监控模块：在一次运行期间被动收集控制台与网络活动"""

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Pattern, Set, Tuple, Union

from playwright.async_api import ConsoleMessage, Page, Request, Response

from .models import AssertionOutcome, ConsoleLog, NetworkActivity

logger = logging.getLogger(__name__)

PatternLike = Union[str, Pattern]


def _compile(pattern: PatternLike) -> Pattern:
    return re.compile(pattern) if isinstance(pattern, str) else pattern


class Subscription:
    """单个页面上的监听注册；``detach()`` 移除全部处理函数"""

    def __init__(self, page: Page):
        self.page = page
        self._handlers: List[Tuple[str, Callable[..., Any]]] = []

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.page.on(event, handler)
        self._handlers.append((event, handler))

    @property
    def active(self) -> bool:
        return bool(self._handlers)

    def detach(self) -> None:
        while self._handlers:
            event, handler = self._handlers.pop()
            try:
                self.page.remove_listener(event, handler)
            except Exception as e:
                logger.debug("Could not remove %s listener: %s", event, e)


class ConsoleMonitor:
    """
    控制台监控：收集控制台消息和未捕获的页面错误。
    与 ``expect_error`` 登记的模式匹配的错误不算异常。
    每次测试运行使用独立实例。
    """

    def __init__(self):
        self._logs: List[ConsoleLog] = []
        self._expected_errors: Set[str] = set()

    def attach_to_page(self, page: Page) -> Subscription:
        subscription = Subscription(page)
        subscription.on("console", self._on_console)
        subscription.on("pageerror", self._on_page_error)
        logger.debug("Console monitor attached")
        return subscription

    def _on_console(self, message: ConsoleMessage) -> None:
        location = message.location or {}
        where = location.get("url")
        if where and location.get("lineNumber") is not None:
            where = f"{where}:{location['lineNumber']}"
        self._logs.append(ConsoleLog(
            level=message.type,
            message=message.text,
            timestamp=datetime.now(),
            location=where,
        ))
        logger.debug("Console %s: %s", message.type, message.text[:100])

    def _on_page_error(self, error: Any) -> None:
        text = getattr(error, "message", None) or str(error)
        self._logs.append(ConsoleLog(
            level="error",
            message=text,
            timestamp=datetime.now(),
            stack_trace=getattr(error, "stack", None),
        ))
        logger.debug("Page error: %s", text[:100])

    def expect_error(self, pattern: str) -> None:
        """消息包含 ``pattern`` 的错误不视为失败"""
        self._expected_errors.add(pattern)

    def get_logs(self) -> List[ConsoleLog]:
        return list(self._logs)

    def get_errors(self) -> List[ConsoleLog]:
        return [log for log in self._logs if log.level == "error"]

    def get_warnings(self) -> List[ConsoleLog]:
        return [log for log in self._logs if log.level == "warning"]

    def get_unexpected_errors(self) -> List[ConsoleLog]:
        return [
            log for log in self.get_errors()
            if not any(pattern in log.message for pattern in self._expected_errors)
        ]

    def has_critical_errors(self) -> bool:
        return bool(self.get_unexpected_errors())

    def get_summary(self) -> Dict[str, Any]:
        unexpected = len(self.get_unexpected_errors())
        return {
            "total_logs": len(self._logs),
            "errors": len(self.get_errors()),
            "warnings": len(self.get_warnings()),
            "unexpected_errors": unexpected,
            "critical": unexpected > 0,
        }

    def get_report(self) -> str:
        summary = self.get_summary()
        lines = [
            "=== CONSOLE MONITORING REPORT ===",
            f"Total Logs: {summary['total_logs']}",
            f"Errors: {summary['errors']}",
            f"Warnings: {summary['warnings']}",
            f"Unexpected Errors: {summary['unexpected_errors']}",
            f"Critical: {'YES' if summary['critical'] else 'NO'}",
        ]
        errors = self.get_errors()
        if errors:
            lines += ["", "--- ERRORS ---"]
            for idx, error in enumerate(errors, 1):
                lines.append(f"{idx}. {error.message}")
                if error.stack_trace:
                    lines.append(f"   Stack: {error.stack_trace[:200]}...")
        warnings = self.get_warnings()
        if warnings:
            lines += ["", "--- WARNINGS ---"]
            lines += [f"{idx}. {w.message}" for idx, w in enumerate(warnings, 1)]
        return "\n".join(lines) + "\n"

    def find_logs(self, pattern: PatternLike) -> List[ConsoleLog]:
        regex = _compile(pattern)
        return [log for log in self._logs if regex.search(log.message)]

    def assert_no_errors(self) -> AssertionOutcome:
        unexpected = self.get_unexpected_errors()
        if not unexpected:
            return AssertionOutcome(passed=True, message="No unexpected console errors")
        messages = "; ".join(e.message for e in unexpected)
        return AssertionOutcome(
            passed=False,
            message=f"Found {len(unexpected)} unexpected console errors: {messages}",
        )

    def assert_log_exists(self, pattern: PatternLike, level: Optional[str] = None) -> AssertionOutcome:
        logs = self.find_logs(pattern)
        if level:
            logs = [log for log in logs if log.level == level]
        if logs:
            return AssertionOutcome(passed=True, message=f"Found {len(logs)} matching log(s)")
        return AssertionOutcome(passed=False, message=f"No logs found matching pattern: {_compile(pattern).pattern}")

    def clear(self) -> None:
        self._logs = []
        logger.debug("Console logs cleared")


class NetworkMonitor:
    """
    网络监控：记录每个响应和失败的请求。传输失败或响应状态码 >= 400
    即为请求失败。每次运行使用独立实例。
    """

    def __init__(self):
        self._requests: List[NetworkActivity] = []
        self._ignored: List[Pattern] = []

    def attach_to_page(self, page: Page) -> Subscription:
        subscription = Subscription(page)
        subscription.on("response", self._on_response)
        subscription.on("requestfailed", self._on_request_failed)
        logger.debug("Network monitor attached")
        return subscription

    def _on_response(self, response: Response) -> None:
        request = response.request
        status = response.status
        activity = NetworkActivity(
            method=request.method,
            url=response.url,
            status_code=status,
            status_text=response.status_text or "",
            timestamp=datetime.now(),
            resource_type=request.resource_type,
            response_time=self._time_to_first_byte(request),
            failed=status >= 400,
        )
        self._requests.append(activity)
        logger.debug("%s %s -> %s", activity.method, activity.url[:100], status)

    def _on_request_failed(self, request: Request) -> None:
        activity = NetworkActivity(
            method=request.method,
            url=request.url,
            status_code=0,
            status_text="Failed",
            timestamp=datetime.now(),
            resource_type=request.resource_type,
            failed=True,
            failure_text=request.failure,
        )
        self._requests.append(activity)
        logger.debug("%s %s failed: %s", activity.method, activity.url[:100], request.failure)

    @staticmethod
    def _time_to_first_byte(request: Request) -> Optional[float]:
        try:
            timing = request.timing
        except Exception:
            return None
        start, first_byte = timing.get("requestStart", -1), timing.get("responseStart", -1)
        if start is None or first_byte is None or start < 0 or first_byte < 0:
            return None
        return round(first_byte - start, 2)

    def ignore_url(self, pattern: PatternLike) -> None:
        """URL 匹配 ``pattern`` 的失败属于预期（如缺失的 favicon）"""
        self._ignored.append(_compile(pattern))

    def _is_ignored(self, activity: NetworkActivity) -> bool:
        return any(regex.search(activity.url) for regex in self._ignored)

    def get_requests(self) -> List[NetworkActivity]:
        return list(self._requests)

    def get_failed_requests(self) -> List[NetworkActivity]:
        return [r for r in self._requests if r.failed and not self._is_ignored(r)]

    def get_failed_request_count(self) -> int:
        return len(self.get_failed_requests())

    def get_request_count(self) -> int:
        return len(self._requests)

    def get_requests_by_method(self, method: str) -> List[NetworkActivity]:
        return [r for r in self._requests if r.method == method.upper()]

    def find_requests(self, pattern: PatternLike) -> List[NetworkActivity]:
        regex = _compile(pattern)
        return [r for r in self._requests if regex.search(r.url)]

    get_requests_by_url = find_requests

    def get_requests_by_resource_type(self, resource_type: str) -> List[NetworkActivity]:
        return [r for r in self._requests if r.resource_type == resource_type]

    def get_requests_by_status(self, status_code: int) -> List[NetworkActivity]:
        return [r for r in self._requests if r.status_code == status_code]

    def has_request_to_endpoint(self, pattern: PatternLike) -> bool:
        return bool(self.find_requests(pattern))

    def get_summary(self) -> Dict[str, Any]:
        failed = self.get_failed_request_count()
        return {
            "total_requests": len(self._requests),
            "successful": len(self._requests) - failed,
            "failed": failed,
            "by_resource_type": dict(Counter(r.resource_type for r in self._requests if r.resource_type)),
            "by_method": dict(Counter(r.method for r in self._requests)),
        }

    def get_report(self) -> str:
        summary = self.get_summary()
        lines = [
            "=== NETWORK MONITORING REPORT ===",
            f"Total Requests: {summary['total_requests']}",
            f"Successful: {summary['successful']}",
            f"Failed: {summary['failed']}",
        ]
        if summary["by_method"]:
            lines += ["", "--- BY METHOD ---"]
            lines += [f"{method}: {count}" for method, count in summary["by_method"].items()]
        if summary["by_resource_type"]:
            lines += ["", "--- BY RESOURCE TYPE ---"]
            lines += [f"{kind}: {count}" for kind, count in summary["by_resource_type"].items()]
        failed = self.get_failed_requests()
        if failed:
            lines += ["", "--- FAILED REQUESTS ---"]
            for idx, req in enumerate(failed, 1):
                lines.append(f"{idx}. {req.method} {req.url[:80]}")
                lines.append(f"   Status: {req.status_code} {req.status_text}")
        return "\n".join(lines) + "\n"

    def assert_no_failed_requests(self) -> AssertionOutcome:
        failed = self.get_failed_requests()
        if not failed:
            return AssertionOutcome(passed=True, message="No failed network requests")
        details = "; ".join(f"{r.method} {r.url} ({r.status_code})" for r in failed)
        return AssertionOutcome(passed=False, message=f"Found {len(failed)} failed requests: {details}")

    def assert_request_exists(self, pattern: PatternLike, method: Optional[str] = None) -> AssertionOutcome:
        requests = self.find_requests(pattern)
        if method:
            requests = [r for r in requests if r.method == method.upper()]
        if requests:
            return AssertionOutcome(passed=True, message=f"Found {len(requests)} request(s) matching pattern")
        return AssertionOutcome(passed=False, message=f"No requests found matching pattern: {_compile(pattern).pattern}")

    def get_slowest_requests(self, count: int = 5) -> List[NetworkActivity]:
        return sorted(self._requests, key=lambda r: r.response_time or 0, reverse=True)[:count]

    def get_average_response_time(self) -> int:
        if not self._requests:
            return 0
        return round(sum(r.response_time or 0 for r in self._requests) / len(self._requests))

    def clear(self) -> None:
        self._requests = []
        logger.debug("Network requests cleared")

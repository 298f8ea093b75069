"""
Unit tests for wait conditions.
"""
import pytest

from uiverify.errors import WaitTimeoutError
from uiverify.models import WaitCondition
from uiverify.waits import WaitEvaluator


class TestWaitEvaluator:

    async def test_element_wait_passes_when_visible(self, page):
        page.add("#ready")
        await WaitEvaluator().wait(page, WaitCondition(type="element", selector="#ready", timeout=50))

    async def test_element_wait_times_out(self, page):
        page.add("#later", visible=False)
        with pytest.raises(WaitTimeoutError, match=r"Wait condition failed \(element\)"):
            await WaitEvaluator().wait(page, WaitCondition(type="element", selector="#later", timeout=50))

    async def test_url_wait(self, page):
        page.url = "https://app.test/dashboard"
        await WaitEvaluator().wait(page, WaitCondition(type="url", url_pattern="**/dashboard"))
        with pytest.raises(WaitTimeoutError):
            await WaitEvaluator().wait(page, WaitCondition(type="url", url_pattern="**/settings", timeout=50))

    async def test_load_states(self, page):
        waits = WaitEvaluator()
        await waits.wait(page, WaitCondition(type="networkidle"))
        await waits.wait(page, WaitCondition(type="load"))
        assert ("wait_for_load_state", "networkidle") in page.calls
        assert ("wait_for_load_state", "load") in page.calls

    async def test_function_wait_passes_expression(self, page):
        await WaitEvaluator().wait(page, WaitCondition(type="function", expression="() => window.ready"))
        assert ("wait_for_function", "() => window.ready") in page.calls


class TestWaitForPredicate:

    async def test_sync_predicate(self):
        calls = []

        def ready():
            calls.append(1)
            return len(calls) >= 3

        await WaitEvaluator().wait_for_predicate(ready, timeout_ms=1000, poll_interval_ms=1)
        assert len(calls) == 3

    async def test_async_predicate(self):
        async def ready():
            return True

        await WaitEvaluator().wait_for_predicate(ready, timeout_ms=100)

    async def test_timeout(self):
        with pytest.raises(WaitTimeoutError, match="Condition timeout after 30ms"):
            await WaitEvaluator().wait_for_predicate(lambda: False, timeout_ms=30, poll_interval_ms=5)

    async def test_raising_predicate_counts_as_not_ready(self):
        def broken():
            raise RuntimeError("not yet")

        with pytest.raises(WaitTimeoutError):
            await WaitEvaluator().wait_for_predicate(broken, timeout_ms=20, poll_interval_ms=5)

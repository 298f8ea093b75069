"""批量执行模块：按顺序运行一组测试"""

import logging
import time
from collections import Counter
from datetime import datetime
from typing import List

from .core import UITestExecutor
from .models import (
    FailedTestSummary,
    FailureReport,
    UITestBatch,
    UITestBatchResult,
    UITestResult,
)

logger = logging.getLogger(__name__)


def build_failure_report(results: List[UITestResult]) -> FailureReport:
    """按测试汇总失败；在多个测试中出现的失败类型记为共性问题"""
    failed = [r for r in results if not r.passed]
    summaries = []
    kinds = Counter()
    for result in failed:
        failures = list(result.failures)
        summaries.append(FailedTestSummary(test_id=result.test_id, test_name=result.test_name, failures=failures))
        seen = {f.message.split(":", 1)[0] for f in failures}
        if result.error_message:
            seen.add("Run error")
        kinds.update(seen)

    return FailureReport(
        total_failures=sum(len(s.failures) for s in summaries),
        failed_tests=summaries,
        common_patterns=[f"{kind} ({count} tests)" for kind, count in kinds.most_common() if count > 1],
    )


async def run_batch(executor: UITestExecutor, batch: UITestBatch) -> UITestBatchResult:
    """
    使用 ``executor`` 依次运行 ``batch`` 中的每个测试。

    设置 ``stop_on_failure`` 时，第一个未通过的测试会终止批次，
    剩余测试计为跳过。
    """
    started_at = datetime.now()
    start = time.monotonic()
    logger.info("Starting batch %s (%d tests)", batch.id, len(batch.tests))

    results: List[UITestResult] = []
    for definition in batch.tests:
        result = await executor.execute_test(definition)
        results.append(result)
        if batch.stop_on_failure and not result.passed:
            logger.warning("Batch %s stopped after failing test %s", batch.id, definition.id)
            break

    passed = sum(1 for r in results if r.passed)
    failed = len(results) - passed
    skipped = len(batch.tests) - len(results)
    summary = f"{passed}/{len(batch.tests)} passed, {failed} failed, {skipped} skipped"
    logger.info("Batch %s finished: %s", batch.id, summary)

    return UITestBatchResult(
        batch_id=batch.id,
        batch_name=batch.name,
        total_tests=len(batch.tests),
        passed_tests=passed,
        failed_tests=failed,
        skipped_tests=skipped,
        duration_ms=int((time.monotonic() - start) * 1000),
        started_at=started_at,
        completed_at=datetime.now(),
        test_results=results,
        summary=summary,
        failure_report=build_failure_report(results) if failed else None,
    )

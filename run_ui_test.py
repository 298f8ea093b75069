"""
从 JSON 文件运行 UI 验证测试。

包含 "tests" 列表的对象按批次运行，其他对象按单个测试定义运行。

安装：
    pip install -e .
    playwright install chromium

用法：
    python run_ui_test.py examples/login.json
    python run_ui_test.py suite.json --json-out result.json

环境变量（也会从 .env 读取）：
    UIVERIFY_BROWSER, UIVERIFY_HEADLESS, UIVERIFY_TIMEOUT_MS, UIVERIFY_VIEWPORT,
    UIVERIFY_RECORD_VIDEO, UIVERIFY_RECORD_HAR, UIVERIFY_EVIDENCE_DIR, UIVERIFY_LOG_LEVEL
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict

from dotenv import load_dotenv

from uiverify import UITestBatch, UITestDefinition, UITestExecutor, run_batch
from uiverify.config import BrowserConfig, evidence_dir_from_env
from uiverify.models import to_jsonable

load_dotenv()


def print_result(result) -> None:
    mark = {"passed": "✓", "partial_pass": "~"}.get(result.status, "✗")
    print(f"{mark} {result.test_name or result.test_id}: {result.status} ({result.duration_ms}ms)")
    if result.error_message:
        print(f"    [错误] {result.error_message}")
    for failure in result.failures:
        flag = "关键" if failure.critical else "非关键"
        print(f"    - [{flag}] {failure.message}")


async def main(path: str, json_out: str = None) -> int:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    async with UITestExecutor(evidence_dir_from_env(), BrowserConfig.from_env()) as executor:
        if isinstance(data, dict) and "tests" in data:
            batch = UITestBatch(
                id=str(data.get("id", "batch")),
                name=data.get("name", ""),
                tests=[UITestDefinition.from_dict(t) for t in data["tests"]],
                description=data.get("description", ""),
                stop_on_failure=bool(data.get("stopOnFailure", data.get("stop_on_failure", False))),
                tags=list(data.get("tags", [])),
            )
            outcome = await run_batch(executor, batch)
            for result in outcome.test_results:
                print_result(result)
            print(f"\n{outcome.summary}")
            report = to_jsonable(asdict(outcome))
            passed = outcome.failed_tests == 0 and outcome.skipped_tests == 0
        else:
            result = await executor.execute_test(UITestDefinition.from_dict(data))
            print_result(result)
            print(result.evidence.actual_outcome)
            report = result.to_dict()
            passed = result.passed

    if json_out:
        with open(json_out, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, ensure_ascii=False)
        print(f"[结果] 已写入 {json_out}")

    return 0 if passed else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="运行 UI 验证测试")
    parser.add_argument("path", help="JSON 格式的测试定义或批次")
    parser.add_argument("--json-out", help="将完整结果写入 JSON 文件")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("UIVERIFY_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main(args.path, args.json_out)))

"""UI 验证引擎包

模块：
- models: 测试定义、页面状态与结果
- config: 浏览器与视觉对比配置
- errors: 异常层级
- browser: 浏览器生命周期，每个页面独立 context
- waits: 等待条件
- controller: 执行用户动作
- perception: DOM、CSS 与无障碍状态
- visual: 截图、视觉对比与清理
- monitors: 控制台与网络监控
- core: 测试执行器
- batch: 顺序批量执行
"""

from .batch import run_batch
from .browser import BrowserManager
from .config import BrowserConfig, Viewport, VisualDiffConfig
from .controller import ActionExecutor
from .core import UITestExecutor
from .errors import UIVerifyError, ValidationError
from .models import UIAction, UIExpectation, UITestBatch, UITestDefinition, UITestResult, WaitCondition
from .monitors import ConsoleMonitor, NetworkMonitor
from .perception import StateVerifier
from .visual import VisualVerifier
from .waits import WaitEvaluator

__all__ = [
    "run_batch",
    "BrowserManager",
    "BrowserConfig",
    "Viewport",
    "VisualDiffConfig",
    "ActionExecutor",
    "UITestExecutor",
    "UIVerifyError",
    "ValidationError",
    "UIAction",
    "UIExpectation",
    "UITestBatch",
    "UITestDefinition",
    "UITestResult",
    "WaitCondition",
    "ConsoleMonitor",
    "NetworkMonitor",
    "StateVerifier",
    "VisualVerifier",
    "WaitEvaluator",
]

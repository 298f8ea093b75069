"""数据模型定义：测试定义、验证状态与结果"""

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import DEFAULT_ACTION_TIMEOUT, Viewport
from .errors import ValidationError


class ActionType(str, Enum):
    CLICK = "click"
    TYPE = "type"
    FILL = "fill"
    SCROLL = "scroll"
    HOVER = "hover"
    DRAG = "drag"
    KEYBOARD = "keyboard"
    PRESS = "press"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"


class WaitType(str, Enum):
    ELEMENT = "element"
    URL = "url"
    NETWORKIDLE = "networkidle"
    LOAD = "load"
    FUNCTION = "function"


class ExpectationType(str, Enum):
    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_HIDDEN = "element_hidden"
    ELEMENT_ENABLED = "element_enabled"
    ELEMENT_DISABLED = "element_disabled"
    TEXT_PRESENT = "text_present"
    TEXT_ABSENT = "text_absent"
    CSS_PROPERTY = "css_property"
    ATTRIBUTE_VALUE = "attribute_value"
    URL_CONTAINS = "url_contains"
    CONSOLE_NO_ERRORS = "console_no_errors"
    NETWORK_SUCCESS = "network_success"
    ELEMENT_COUNT = "element_count"
    VISUAL_DIFF = "visual_diff"
    ACCESSIBILITY_VALID = "accessibility_valid"


class Operator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    MATCHES = "matches"
    GREATER = "greater"
    LESS = "less"


class ScreenshotPhase(str, Enum):
    BASELINE = "baseline"
    BEFORE_ACTION = "before_action"
    AFTER_ACTION = "after_action"
    FINAL = "final"


class FailureType(str, Enum):
    ACTION_FAILED = "action_failed"
    EXPECTATION_FAILED = "expectation_failed"


def _coerce(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {what} type: {value!r} (expected one of: {allowed})") from None


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """返回第一个存在的键，同时接受 camelCase 与 snake_case 写法"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


# ---------------------------------------------------------------------------
# 测试定义（输入，引擎不会修改）
# ---------------------------------------------------------------------------

@dataclass
class WaitCondition:
    """动作或导航前后的阻塞等待条件"""
    type: WaitType
    selector: Optional[str] = None
    url_pattern: Optional[str] = None
    expression: Optional[str] = None  # JS 谓词，仅用于 function 等待
    timeout: int = DEFAULT_ACTION_TIMEOUT

    def __post_init__(self):
        self.type = _coerce(WaitType, self.type, "wait condition")
        if self.type is WaitType.ELEMENT and not self.selector:
            raise ValidationError("Element wait requires selector")
        if self.type is WaitType.URL and not self.url_pattern:
            raise ValidationError("URL wait requires urlPattern")
        if self.type is WaitType.FUNCTION and not self.expression:
            raise ValidationError("Function wait requires expression")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WaitCondition":
        return cls(
            type=data.get("type"),
            selector=data.get("selector"),
            url_pattern=_pick(data, "urlPattern", "url_pattern"),
            expression=data.get("expression"),
            timeout=_pick(data, "timeout", default=DEFAULT_ACTION_TIMEOUT),
        )


_VALUE_REQUIRED = (ActionType.TYPE, ActionType.FILL, ActionType.SELECT)
_KEY_REQUIRED = (ActionType.KEYBOARD, ActionType.PRESS)


@dataclass
class UIAction:
    """单个确定性的用户动作"""
    type: ActionType
    selector: str = ""
    id: Optional[str] = None
    value: Optional[str] = None
    target_selector: Optional[str] = None  # 拖拽目标
    key: Optional[str] = None
    delay: Optional[int] = None  # 按键间隔（ms）
    timeout: int = DEFAULT_ACTION_TIMEOUT
    wait_for: Optional[WaitCondition] = None
    wait_after: Optional[WaitCondition] = None
    screenshot_before: bool = False
    screenshot_after: bool = False
    description: Optional[str] = None

    def __post_init__(self):
        self.type = _coerce(ActionType, self.type, "action")
        if self.type is ActionType.DRAG and not self.target_selector:
            raise ValidationError("Drag action requires targetSelector")
        if self.type in _VALUE_REQUIRED and self.value is None:
            raise ValidationError(f"{self.type.value.capitalize()} action requires value")
        if self.type in _KEY_REQUIRED and not self.key:
            raise ValidationError("Keyboard action requires key")
        if self.type not in _KEY_REQUIRED and not self.selector:
            raise ValidationError(f"{self.type.value.capitalize()} action requires selector")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIAction":
        wait_for = _pick(data, "waitFor", "wait_for")
        wait_after = _pick(data, "waitAfter", "wait_after")
        return cls(
            type=data.get("type"),
            selector=data.get("selector") or "",
            id=data.get("id"),
            value=data.get("value"),
            target_selector=_pick(data, "targetSelector", "target_selector"),
            key=data.get("key"),
            delay=data.get("delay"),
            timeout=_pick(data, "timeout", default=DEFAULT_ACTION_TIMEOUT),
            wait_for=WaitCondition.from_dict(wait_for) if wait_for else None,
            wait_after=WaitCondition.from_dict(wait_after) if wait_after else None,
            screenshot_before=bool(_pick(data, "screenshotBefore", "screenshot_before", default=False)),
            screenshot_after=bool(_pick(data, "screenshotAfter", "screenshot_after", default=False)),
            description=data.get("description"),
        )

    def describe(self) -> str:
        """可读描述，用于日志和报告"""
        if self.description:
            return self.description
        t = self.type
        if t is ActionType.CLICK:
            return f"Click on {self.selector}"
        if t is ActionType.TYPE:
            return f'Type "{self.value}" into {self.selector}'
        if t is ActionType.FILL:
            return f'Fill {self.selector} with "{self.value}"'
        if t is ActionType.SCROLL:
            return f"Scroll {self.selector or 'page'}"
        if t is ActionType.HOVER:
            return f"Hover over {self.selector}"
        if t is ActionType.DRAG:
            return f"Drag {self.selector} to {self.target_selector}"
        if t in _KEY_REQUIRED:
            return f"Press key {self.key}"
        if t is ActionType.SELECT:
            return f'Select "{self.value}" from {self.selector}'
        if t is ActionType.CHECK:
            return f"Check {self.selector}"
        return f"Uncheck {self.selector}"


_SELECTOR_REQUIRED = {
    ExpectationType.ELEMENT_VISIBLE,
    ExpectationType.ELEMENT_HIDDEN,
    ExpectationType.ELEMENT_ENABLED,
    ExpectationType.ELEMENT_DISABLED,
    ExpectationType.TEXT_PRESENT,
    ExpectationType.TEXT_ABSENT,
    ExpectationType.CSS_PROPERTY,
    ExpectationType.ATTRIBUTE_VALUE,
    ExpectationType.ELEMENT_COUNT,
    ExpectationType.ACCESSIBILITY_VALID,
}
_PROPERTY_REQUIRED = {ExpectationType.CSS_PROPERTY, ExpectationType.ATTRIBUTE_VALUE}
_VALUE_REQUIRED_EXPECTATIONS = {
    ExpectationType.TEXT_PRESENT,
    ExpectationType.TEXT_ABSENT,
    ExpectationType.CSS_PROPERTY,
    ExpectationType.ATTRIBUTE_VALUE,
    ExpectationType.URL_CONTAINS,
    ExpectationType.ELEMENT_COUNT,
}


@dataclass
class UIExpectation:
    """所有动作执行完毕后检查的声明式期望"""
    type: ExpectationType
    id: Optional[str] = None
    critical: bool = True
    selector: Optional[str] = None
    property: Optional[str] = None  # CSS 属性名或元素属性名
    expected_value: Any = None
    operator: Optional[Operator] = None
    tolerance: float = 0.0  # 百分比，仅用于 visual_diff
    description: Optional[str] = None

    def __post_init__(self):
        self.type = _coerce(ExpectationType, self.type, "expectation")
        if self.operator is not None:
            self.operator = _coerce(Operator, self.operator, "operator")
        if self.type in _SELECTOR_REQUIRED and not self.selector:
            raise ValidationError(f"{self.type.value} expectation requires selector")
        if self.type in _PROPERTY_REQUIRED and not self.property:
            raise ValidationError(f"{self.type.value} expectation requires property")
        if self.type in _VALUE_REQUIRED_EXPECTATIONS and self.expected_value is None:
            raise ValidationError(f"{self.type.value} expectation requires expectedValue")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIExpectation":
        return cls(
            type=data.get("type"),
            id=data.get("id"),
            critical=bool(data.get("critical", True)),
            selector=data.get("selector"),
            property=data.get("property"),
            expected_value=_pick(data, "expectedValue", "expected_value"),
            operator=data.get("operator"),
            tolerance=float(data.get("tolerance") or 0.0),
            description=data.get("description"),
        )

    def label(self) -> str:
        return self.description or self.type.value


@dataclass
class UITestDefinition:
    """一次运行的不可变输入"""
    id: str
    name: str
    url: str
    actions: List[UIAction] = field(default_factory=list)
    expectations: List[UIExpectation] = field(default_factory=list)
    viewport: Optional[Viewport] = None
    description: str = ""
    tags: List[str] = field(default_factory=list)
    priority: Optional[str] = None

    def __post_init__(self):
        if not self.url:
            raise ValidationError("Test definition requires url")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UITestDefinition":
        """从 JSON 结构的输入构建测试定义"""
        viewport = data.get("viewport")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            url=data.get("url", ""),
            actions=[UIAction.from_dict(a) for a in data.get("actions", [])],
            expectations=[UIExpectation.from_dict(e) for e in data.get("expectations", [])],
            viewport=Viewport(
                width=viewport["width"],
                height=viewport["height"],
                device_scale_factor=_pick(viewport, "deviceScaleFactor", "device_scale_factor"),
            ) if viewport else None,
            description=data.get("description", ""),
            tags=list(data.get("tags", [])),
            priority=data.get("priority"),
        )


# ---------------------------------------------------------------------------
# 派生的页面状态（不持久化）
# ---------------------------------------------------------------------------

@dataclass
class VisibilityState:
    visible: bool
    display: str
    visibility: str
    opacity: float
    hidden: bool

    @classmethod
    def not_found(cls) -> "VisibilityState":
        return cls(visible=False, display="none", visibility="hidden", opacity=0.0, hidden=True)


@dataclass
class InteractivityState:
    clickable: bool
    disabled: bool
    covered: bool
    in_viewport: bool

    @classmethod
    def not_found(cls) -> "InteractivityState":
        return cls(clickable=False, disabled=True, covered=False, in_viewport=False)


@dataclass
class ElementState:
    exists: bool
    visibility: VisibilityState
    interactivity: InteractivityState
    text: Optional[str] = None
    html: Optional[str] = None


@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float
    visible: bool
    interactive: bool


@dataclass
class CheckResult:
    """CSS、文本或属性检查的实际值与期望值"""
    actual: str
    expected: str
    matches: bool


@dataclass
class AccessibilityReport:
    has_aria_label: bool
    has_aria_role: bool
    aria_labels: Dict[str, str]
    issues: List[str]


# ---------------------------------------------------------------------------
# 证据
# ---------------------------------------------------------------------------

@dataclass
class ScreenshotMetadata:
    timestamp: datetime
    url: str
    viewport: Viewport
    phase: ScreenshotPhase
    action_id: Optional[str] = None
    selector: Optional[str] = None


@dataclass
class VisualDiffResult:
    identical: bool
    percent_different: float
    pixels_changed: int
    total_pixels: int = 0
    diff_path: Optional[str] = None


@dataclass
class ConsistencyResult:
    consistent: bool
    visible_elements: List[str]
    hidden_elements: List[str]


@dataclass
class CleanupResult:
    cleaned: int
    failed_count: int


@dataclass
class ConsoleLog:
    level: str  # log|error|warning|info|debug|...
    message: str
    timestamp: datetime
    stack_trace: Optional[str] = None
    location: Optional[str] = None


@dataclass
class NetworkActivity:
    method: str
    url: str
    status_code: int
    status_text: str
    timestamp: datetime
    resource_type: Optional[str] = None
    response_time: Optional[float] = None  # ms
    failed: bool = False
    failure_text: Optional[str] = None


@dataclass
class AssertionOutcome:
    passed: bool
    message: str


# ---------------------------------------------------------------------------
# 结果
# ---------------------------------------------------------------------------

@dataclass
class ActionResult:
    success: bool
    duration_ms: int
    error: Optional[str] = None


@dataclass
class ExpectationEvidence:
    timestamp: datetime
    message: str
    screenshot: Optional[str] = None


@dataclass
class ExpectationResult:
    type: ExpectationType
    passed: bool = False
    expectation_id: Optional[str] = None
    description: Optional[str] = None
    actual_value: Any = None
    expected_value: Any = None
    evidence: Optional[ExpectationEvidence] = None


@dataclass
class TestFailure:
    __test__ = False

    type: FailureType
    message: str
    action_id: Optional[str] = None
    expectation_id: Optional[str] = None
    critical: bool = True  # 为 True 时决定测试失败
    evidence: Optional[str] = None


@dataclass
class UITestEvidence:
    test_id: str
    test_name: str
    screenshot_baseline: Optional[str] = None
    screenshots_final: Optional[str] = None
    dom_snapshots: Dict[str, str] = field(default_factory=dict)  # baseline/final
    action_screenshots: Dict[str, Dict[str, str]] = field(default_factory=dict)  # 动作 id -> before/after
    visual_diffs: Dict[str, str] = field(default_factory=dict)
    console_logs: List[ConsoleLog] = field(default_factory=list)
    network_activity: List[NetworkActivity] = field(default_factory=list)
    expected_outcome: str = ""
    actual_outcome: str = ""
    pass_fail: str = "fail"


@dataclass
class UITestResult:
    test_id: str
    test_name: str
    started_at: datetime
    completed_at: datetime
    evidence: UITestEvidence
    passed: bool = False
    partial_pass: bool = False
    duration_ms: int = 0
    actions_executed: int = 0
    expectation_results: List[ExpectationResult] = field(default_factory=list)
    failures: List[TestFailure] = field(default_factory=list)
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None

    @property
    def status(self) -> str:
        if self.error_message is not None:
            return "errored"
        if not self.passed:
            return "failed"
        return "partial_pass" if self.partial_pass else "passed"

    def to_dict(self) -> Dict[str, Any]:
        """可 JSON 序列化的表示（时间为 ISO 字符串，枚举取值）"""
        data = to_jsonable(asdict(self))
        data["status"] = self.status
        return data


@dataclass
class UITestBatch:
    id: str
    name: str
    tests: List[UITestDefinition]
    description: str = ""
    stop_on_failure: bool = False
    tags: List[str] = field(default_factory=list)


@dataclass
class FailedTestSummary:
    test_id: str
    test_name: str
    failures: List[TestFailure]


@dataclass
class FailureReport:
    total_failures: int
    failed_tests: List[FailedTestSummary]
    common_patterns: List[str] = field(default_factory=list)


@dataclass
class UITestBatchResult:
    batch_id: str
    batch_name: str
    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int
    duration_ms: int
    started_at: datetime
    completed_at: datetime
    test_results: List[UITestResult]
    summary: str
    failure_report: Optional[FailureReport] = None


def to_jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return to_jsonable({f.name: getattr(value, f.name) for f in fields(value)})
    return value

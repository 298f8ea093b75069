"""异常定义"""


class UIVerifyError(Exception):
    """引擎抛出的所有异常的基类"""


class ValidationError(UIVerifyError, ValueError):
    """测试定义、动作、等待条件或期望不合法"""


class WaitTimeoutError(UIVerifyError):
    """等待条件在超时前未满足"""


class ActionError(UIVerifyError):
    """用户动作无法执行"""


class NotClickableError(ActionError):
    """目标元素不可点击：隐藏、零尺寸、被遮挡或被禁用"""

    def __init__(self, selector: str, reason: str):
        super().__init__(f"Element not clickable: {selector} ({reason})")
        self.selector = selector
        self.reason = reason


class ElementNotFoundError(UIVerifyError):
    """选择器没有匹配到任何元素（区别于元素被隐藏）"""

    def __init__(self, selector: str, detail: str = "not found"):
        super().__init__(f"Element {detail}: {selector}")
        self.selector = selector


class BrowserError(UIVerifyError):
    """浏览器、context 或页面创建失败"""


class ElementHiddenError(UIVerifyError):
    """元素存在但没有渲染盒子（display:none、已脱离文档或尺寸为零）"""

    def __init__(self, selector: str):
        super().__init__(f"Element has no bounding box (hidden): {selector}")
        self.selector = selector

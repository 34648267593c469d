"""异常定义：区分模型输出错误、远端瞬时错误与浏览器错误"""


class AgentError(Exception):
    """所有智能体异常的基类"""


class ModelOutputError(AgentError):
    """模型输出无法解析或不符合动作格式"""


class TokenLimitError(ModelOutputError):
    """输入超出模型的上下文长度"""


class TransientModelError(AgentError):
    """限流、资源耗尽或超时等可重试的远端错误"""


class RateLimitError(TransientModelError):
    pass


class BrowserError(AgentError):
    """浏览器操作失败"""


class NavigationError(BrowserError):
    """跳转失败或目标 URL 不在允许范围内"""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class ElementResolutionError(BrowserError):
    """元素编号或指纹在当前页面中已无法定位"""

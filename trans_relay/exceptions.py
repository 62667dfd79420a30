# trans_relay/exceptions.py
"""
本模块定义了 Trans-Relay 中所有自定义的、语义化的异常类型。

这些异常只在组件内部流动：调度器会在边界处把它们全部转换为
`success=False` 的 `TranslationResult`，调用方永远不会直接收到它们。
"""


class TransRelayError(Exception):
    """所有 Trans-Relay 自定义异常的通用基类。"""

    pass


class ConfigurationError(TransRelayError):
    """
    表示加载、解析或验证配置时发生的错误。
    例如后端缺少访问令牌，或配置的语言不受支持。
    """

    pass


class BackendNotFoundError(TransRelayError, KeyError):
    """
    表示请求了一个未注册的翻译后端。
    继承自 KeyError，以保持与字典查找行为的一致性。
    """

    pass


class APIError(TransRelayError):
    """表示与远程翻译服务交互时发生的错误（网络、鉴权、响应格式）。"""

    pass


class CacheInconsistencyError(TransRelayError):
    """缓存内部状态不一致。属于程序缺陷类别，不应出现在调用方面前。"""

    pass


class RateLimitTimeoutError(TransRelayError):
    """在限定时间内未能从速率控制器获得许可。"""

    pass

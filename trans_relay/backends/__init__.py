# trans_relay/backends/__init__.py
"""翻译后端插件包。每个模块提供一个 `BaseBackend` 的具体实现。"""

# trans_relay/registry.py
"""
本模块负责后端的发现与注册。

- `discover_backends()` 动态扫描 `trans_relay.backends` 包，记录所有可用的后端类。
- `BackendRegistry` 是运行时的具名后端实例表，支持热替换与默认后端切换。
"""

import importlib
import pkgutil
import threading
from typing import Any, Dict, List, Optional

import structlog

from trans_relay.backends.base import BaseBackend
from trans_relay.exceptions import BackendNotFoundError

log = structlog.get_logger(__name__)
BACKEND_CLASSES: Dict[str, type[BaseBackend[Any]]] = {}


def discover_backends() -> Dict[str, type[BaseBackend[Any]]]:
    """
    动态发现 `trans_relay.backends` 包下的所有后端类并记录。

    此函数是幂等的，只在首次调用时执行发现操作。
    """
    if BACKEND_CLASSES:
        return BACKEND_CLASSES

    import trans_relay.backends

    successful: List[str] = []
    skipped: List[Dict[str, str]] = []

    for module_info in pkgutil.iter_modules(trans_relay.backends.__path__):
        module_name = module_info.name
        if module_name == "base" or module_name.startswith("_"):
            continue

        try:
            module = importlib.import_module(f"trans_relay.backends.{module_name}")
        except ImportError as e:
            skipped.append(
                {"module_name": module_name, "missing_dependency": str(e.name)}
            )
            continue

        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (
                isinstance(attr, type)
                and issubclass(attr, BaseBackend)
                and attr is not BaseBackend
                and attr.__module__ == module.__name__
            ):
                backend_name = attr.__name__.replace("Backend", "").lower()
                BACKEND_CLASSES[backend_name] = attr
                successful.append(backend_name)

    log_payload: Dict[str, Any] = {"registered": sorted(successful)}
    if skipped:
        log_payload["skipped"] = skipped
    log.info("后端发现完成。", **log_payload)
    return BACKEND_CLASSES


def build_backend(
    backend_name: str, config_data: Optional[Dict[str, Any]] = None
) -> BaseBackend[Any]:
    """根据后端名称与配置字典创建后端实例。"""
    backend_class = discover_backends().get(backend_name)
    if backend_class is None:
        raise BackendNotFoundError(f"后端 '{backend_name}' 未在后端类表中找到。")
    backend_config = backend_class.CONFIG_MODEL(**(config_data or {}))
    return backend_class(backend_config)


class BackendRegistry:
    """线程安全的具名后端实例表。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._backends: Dict[str, BaseBackend[Any]] = {}
        self._default: Optional[str] = None

    def register(self, name: str, backend: BaseBackend[Any]) -> None:
        """注册（或替换）一个后端。第一个注册的后端自动成为默认后端。"""
        with self._lock:
            replaced = name in self._backends
            self._backends[name] = backend
            if self._default is None:
                self._default = name
        log.info("已注册翻译后端", backend=name, replaced=replaced)

    def unregister(self, name: str) -> Optional[BaseBackend[Any]]:
        """移除一个后端。若移除的是默认后端，则由剩余的第一个后端接替。"""
        with self._lock:
            backend = self._backends.pop(name, None)
            if backend is not None and self._default == name:
                self._default = next(iter(self._backends), None)
        if backend is not None:
            log.info("已移除翻译后端", backend=name)
        return backend

    def get(self, name: str) -> Optional[BaseBackend[Any]]:
        with self._lock:
            return self._backends.get(name)

    def resolve(self, name: Optional[str] = None) -> tuple[str, BaseBackend[Any]]:
        """按名称查找后端，名称为空时使用默认后端。找不到时抛出 BackendNotFoundError。"""
        with self._lock:
            selected = name or self._default
            backend = self._backends.get(selected) if selected else None
        if selected is None or backend is None:
            raise BackendNotFoundError(f"backend not found: {selected or '<default>'}")
        return selected, backend

    def set_default(self, name: str) -> bool:
        """设置默认后端。名称未注册时不做任何改动并返回 False。"""
        with self._lock:
            if name not in self._backends:
                known = False
            else:
                self._default = name
                known = True
        if known:
            log.info("已设置默认翻译后端", backend=name)
        else:
            log.warning("忽略未注册的默认后端", backend=name)
        return known

    @property
    def default_name(self) -> Optional[str]:
        with self._lock:
            return self._default

    def list_names(self) -> List[str]:
        with self._lock:
            return list(self._backends)

    def backends(self) -> List[BaseBackend[Any]]:
        with self._lock:
            return list(self._backends.values())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._backends

    def __len__(self) -> int:
        with self._lock:
            return len(self._backends)

"""下载会话上下文

一次下载会话内共享的可变状态：在途键集合与 "latest" 版本映射。
显式传递给每个条目，不使用模块级全局变量。
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pkgstash.core.dltracker import DownloadTracker
    from pkgstash.services.download.source import PackageSource


@dataclass(frozen=True)
class WalkPolicy:
    """依赖遍历策略

    shrinkwrap=True 表示依赖来自锁文件：只处理列出的条目，不再递归。
    """

    include_dev: bool = False
    no_peer: bool = False
    no_optional: bool = False
    no_shrinkwrap: bool = False
    top_level: bool = False
    shrinkwrap: bool = False

    def child(self, **changes: Any) -> WalkPolicy:
        return dataclasses.replace(self, **changes)


@dataclass
class ItemResult:
    """单个条目的处理结果"""

    spec: str
    name: str = ""
    duplicate: bool = False
    failed_optional: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"spec": self.spec}
        if self.name:
            data["name"] = self.name
        if self.duplicate:
            data["duplicate"] = True
        if self.failed_optional:
            data["failedOptional"] = True
        return data


@dataclass
class SessionContext:
    tracker: DownloadTracker
    source: PackageSource
    inflight: set[str] = field(default_factory=set)
    latest: dict[str, str] = field(default_factory=dict)

    def claim(self, key: str) -> bool:
        """登记在途键；已在途返回 False

        检查与登记之间没有 await，对事件循环是原子的。
        """
        if key in self.inflight:
            return False
        self.inflight.add(key)
        return True

    def release(self, *keys: str) -> None:
        for key in keys:
            self.inflight.discard(key)

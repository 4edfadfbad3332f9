"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import MISSING, asdict, dataclass, field, fields

from pkgstash.core.exceptions import ConfigError
from pkgstash.utils.json_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "https://registry.npmjs.org/"


@dataclass
class Config:
    """全局配置"""

    # 目录
    dl_dir: str = "."

    # 上游
    registry: str = DEFAULT_REGISTRY
    fetch_timeout: int = 60

    # 依赖类别策略
    include_dev: bool = False
    no_peer: bool = False
    no_optional: bool = False
    no_shrinkwrap: bool = False

    log_level: str = "INFO"

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "pkgstash.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k.replace("-", "_"): v for k, v in data.items() if k.replace("-", "_") in known}
        extra = {k: v for k, v in data.items() if k.replace("-", "_") not in known}
        for f in fields(cls):
            if f.name not in matched or f.default is MISSING:
                continue
            value, expected = matched[f.name], type(f.default)
            if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
                raise ConfigError(
                    f"配置项 {f.name} 类型无效: 期望 {expected.__name__}, 实际 {type(value).__name__} ({path})"
                )
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "pkgstash.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current

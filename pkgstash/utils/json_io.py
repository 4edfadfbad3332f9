"""索引与配置文件读写

- 读取: 统一 UTF-8、剥离 BOM、限制文件大小
- 写入: 同目录临时文件 + os.replace，写出中途失败不会留下半个索引
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from pkgstash.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

# 索引 / 配置 / package.json 的大小上限
MAX_FILE_SIZE = 50 * 1024 * 1024

_BOM = "\ufeff"


def atomic_write(path: Path, content: str) -> None:
    """原子写入文本文件

    临时文件以 "." 开头、".tmp" 结尾，目录重建时不会被当成 tarball。

    Raises:
        OSError: 写入或替换失败（临时文件已清理）
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except Exception:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def read_text(path: Path) -> str:
    """读取 UTF-8 文本并去掉开头的 BOM

    Raises:
        ValueError: 文件超过 MAX_FILE_SIZE
        OSError: 读取失败
    """
    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ValueError(f"文件过大: {path} ({size} 字节，上限 {MAX_FILE_SIZE})")
    return path.read_text(encoding="utf-8").removeprefix(_BOM)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 配置；文件不存在或为空时返回 {}

    Raises:
        ConfigError: YAML 语法错误，或顶层不是映射
    """
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = yaml.safe_load(read_text(p))
    except yaml.YAMLError as e:
        raise ConfigError(f"配置文件 YAML 格式错误: {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是映射，实际为 {type(data).__name__}: {p}")
    return data


def load_json(path: str | Path) -> Any:
    """读取 JSON 文件

    Raises:
        json.JSONDecodeError: JSON 格式错误
        OSError / ValueError: 读取失败或文件过大
    """
    return json.loads(read_text(Path(path)))


def save_json(path: str | Path, data: Any, *, indent: int | None = None) -> None:
    atomic_write(Path(path), json.dumps(data, indent=indent, ensure_ascii=False))

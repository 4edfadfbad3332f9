"""语义化版本匹配

在已记录的版本键中找出满足（可能宽松书写的）范围表达式的最大版本。
范围语法遵循 npm 约定（^ ~ x-range 连字符范围 ||），由 semantic_version.NpmSpec 解析。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import semantic_version

logger = logging.getLogger(__name__)


def clean_version(value: str) -> str | None:
    """去掉前导 v / = 与空白，返回规范版本串；无效时返回 None"""
    candidate = value.strip().lstrip("=v").strip()
    try:
        return str(semantic_version.Version(candidate))
    except ValueError:
        return None


def parse_range(spec: str) -> semantic_version.NpmSpec | None:
    """解析范围表达式，空串与 "latest" 之外的无效表达式返回 None"""
    expr = spec.strip()
    if expr == "":
        expr = "*"
    try:
        return semantic_version.NpmSpec(expr)
    except ValueError:
        # 宽松模式：允许 "v1.2.3" / "=1.2.3" 这类单版本写法
        cleaned = clean_version(expr)
        if cleaned is None:
            return None
        return semantic_version.NpmSpec(cleaned)


def max_satisfying(spec: str, versions: Iterable[str], *, clean: bool = False) -> str | None:
    """返回满足 spec 的最大版本键（原样返回记录中的键）

    clean=True 时先对候选键做清洗（如 git 标签 "v1.2.0"），
    无法清洗的键（如提交哈希）被忽略。
    """
    rng = parse_range(spec)
    if rng is None:
        logger.debug("无效的 semver 表达式: %s", spec)
        return None

    candidates: dict[semantic_version.Version, str] = {}
    for key in versions:
        text = clean_version(key) if clean else key
        if text is None:
            continue
        try:
            candidates[semantic_version.Version(text)] = key
        except ValueError:
            continue

    best = rng.select(candidates)
    if best is None:
        return None
    return candidates[best]

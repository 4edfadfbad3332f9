"""依赖遍历

按依赖类别与会话策略决定处理哪些依赖，同级依赖并发处理。

清单依赖:
  - bundleDependencies 中的名字一律排除（随父包 tarball 分发）
  - devDependencies 仅在 include_dev 且处于顶层时处理
  - peerDependencies 除非 no_peer
  - optionalDependencies 除非 no_optional；失败降级为 failed_optional

锁文件依赖: 按每条的 dev / optional / devOptional / peer / inBundle 标记过滤，
条目本身不再递归。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import Any

from pkgstash.core.exceptions import PkgStashError
from pkgstash.core.lockfile import LockDep
from pkgstash.services.download.agents import run_item
from pkgstash.services.download.session import ItemResult, SessionContext, WalkPolicy

logger = logging.getLogger(__name__)

# 可选依赖的这些失败不影响父包
OPTIONAL_FAILURES = (PkgStashError, OSError, ValueError)


def flatten(nested: Iterable[list[ItemResult]]) -> list[ItemResult]:
    return [item for group in nested for item in group]


async def settle(ops: Iterable[Awaitable[list[ItemResult]]]) -> list[list[ItemResult]]:
    """并发等待全部同级任务结束，再按输入顺序抛出第一个失败

    可选依赖已由 _tolerate 包装，这里出现的异常都会中止父级。
    """
    outcomes = await asyncio.gather(*ops, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return outcomes


async def _tolerate(spec: str, op: Awaitable[list[ItemResult]]) -> list[ItemResult]:
    try:
        return await op
    except OPTIONAL_FAILURES as e:
        logger.warning("可选依赖拉取失败，已跳过: %s (%s)", spec, e)
        return [ItemResult(spec, failed_optional=True)]


def _bundled_names(manifest: dict[str, Any]) -> set[str]:
    bundled = manifest.get("bundleDependencies", manifest.get("bundledDependencies"))
    if bundled is True:
        return set(manifest.get("dependencies") or {})
    if isinstance(bundled, list):
        return {n for n in bundled if isinstance(n, str)}
    return set()


def collect_manifest_deps(
    manifest: dict[str, Any], policy: WalkPolicy,
) -> tuple[list[str], set[str]]:
    """按策略列出要处理的依赖说明符，以及其中的可选依赖集合"""
    bundled = _bundled_names(manifest)
    specs: list[str] = []
    optional: set[str] = set()

    def _add(section: str, into_optional: bool = False) -> None:
        deps = manifest.get(section) or {}
        if not isinstance(deps, dict):
            logger.warning("清单 %s 不是对象，已忽略", section)
            return
        for name, spec in deps.items():
            if name in bundled:
                continue
            if not isinstance(spec, str):
                logger.warning("依赖 %s 的说明符不是字符串，已忽略", name)
                continue
            item = f"{name}@{spec}"
            specs.append(item)
            if into_optional:
                optional.add(item)

    _add("dependencies")
    if policy.include_dev and policy.top_level:
        _add("devDependencies")
    if not policy.no_peer:
        _add("peerDependencies")
    if not policy.no_optional:
        _add("optionalDependencies", into_optional=True)
    return specs, optional


async def walk_manifest(
    manifest: dict[str, Any], ctx: SessionContext, policy: WalkPolicy,
) -> list[ItemResult]:
    """处理清单中的依赖，返回扁平化的结果

    非可选依赖失败时，等其余同级依赖结束后再向上传播。
    """
    specs, optional = collect_manifest_deps(manifest, policy)
    ops = []
    for spec in specs:
        op = run_item(spec, ctx, policy)
        ops.append(_tolerate(spec, op) if spec in optional else op)
    return flatten(await settle(ops))


def lock_dep_included(dep: LockDep, policy: WalkPolicy) -> bool:
    if dep.in_bundle:
        return False
    if dep.peer and policy.no_peer:
        return False
    if dep.dev and not policy.include_dev:
        return False
    if (dep.optional or (dep.dev_optional and not policy.include_dev)) and policy.no_optional:
        return False
    if dep.dev and not policy.top_level:
        return False
    return True


async def walk_lock_deps(
    deps: list[LockDep], ctx: SessionContext, policy: WalkPolicy,
) -> list[ItemResult]:
    """处理锁文件依赖；条目按锁文件模式处理，不再递归"""
    item_policy = policy.child(shrinkwrap=True)
    ops = []
    for dep in deps:
        if not lock_dep_included(dep, policy):
            logger.debug("按策略跳过锁文件依赖: %s", dep.spec)
            continue
        op = run_item(dep.spec, ctx, item_policy)
        ops.append(_tolerate(dep.spec, op) if dep.optional or dep.dev_optional else op)
    return flatten(await settle(ops))


async def walk_specs(
    specs: list[str], ctx: SessionContext, policy: WalkPolicy,
) -> list[list[ItemResult]]:
    """处理命令行给出的说明符，按输入顺序返回各自的结果列表"""
    return await settle(run_item(s, ctx, policy) for s in specs)

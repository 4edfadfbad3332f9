"""条目处理 (Item Agent)

每种说明符类别一个实现，由 make_agent() 按归一化的下载类型选择:

  semver / tag -> RegistryAgent
  git          -> GitAgent
  url          -> UrlAgent

去重、递归、登记等共享流程集中在 run_item():
  1. 索引 / latest 映射已满足 -> duplicate
  2. 在途键已存在 -> duplicate，否则登记
  3. 取清单并校验 _resolved
  4. 由清单得到包身份，已在途或已在索引中 -> duplicate
  5. 递归处理依赖（锁文件模式下不递归）
  6. 拉取 tarball
  7. 释放在途键，登记到索引
  结束时（包括重复与失败）通知上游丢弃清单阶段的临时数据
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import urlparse

from pkgstash.core.dltracker import SPEC_TYPE_MAP, TrackerRecord
from pkgstash.core.dltracker.models import RE_HEX40
from pkgstash.core.exceptions import DuplicateSpecError, ManifestError, ValidationError
from pkgstash.core.filename_codec import make_tarball_name
from pkgstash.core.git_keys import derive_git_key
from pkgstash.core.lockfile import from_lock_data
from pkgstash.core.spec_parser import ParsedSpec, parse
from pkgstash.services.download.session import ItemResult, SessionContext, WalkPolicy

logger = logging.getLogger(__name__)


class ItemAgent(Protocol):
    """单个说明符类别的处理接口"""

    tracker_type: str
    record: TrackerRecord | None

    @property
    def fetch_spec(self) -> str: ...

    @property
    def inflight_key(self) -> str: ...

    def already_have(self, ctx: SessionContext) -> bool: ...

    def identify(self, manifest: dict[str, Any], ctx: SessionContext) -> str: ...

    def result_name(self, manifest: dict[str, Any]) -> str: ...


def check_resolved(manifest: Any, spec: str) -> str:
    """校验清单的 _resolved: 必须存在、为字符串、可解析为 URL 且不是 file:

    Raises:
        ManifestError: 校验失败
    """
    if not isinstance(manifest, dict):
        raise ManifestError(f"清单不是对象: {spec}")
    resolved = manifest.get("_resolved")
    if not resolved:
        raise ManifestError(f"清单缺少 _resolved: {spec}")
    if not isinstance(resolved, str):
        raise ManifestError(f"清单 _resolved 类型错误 ({type(resolved).__name__}): {spec}")
    scheme = urlparse(resolved).scheme
    if not scheme:
        raise ManifestError(f"清单 _resolved 无法解析为 URL: {resolved}")
    if scheme == "file":
        raise ManifestError(f"清单 _resolved 指向本地文件: {resolved}")
    return resolved


def _manifest_name(manifest: dict[str, Any]) -> str:
    name = manifest.get("name")
    return name if isinstance(name, str) else ""


# =========================================================================
# 各类别实现
# =========================================================================

class RegistryAgent:
    """注册表包（精确版本 / 范围 / 标签）"""

    def __init__(self, parsed: ParsedSpec) -> None:
        self.parsed = parsed
        self.name = parsed.name or ""
        # 裸包名、"latest"、"*" 都表示"当前最新"，只在会话内按包名去重
        self.implicit_latest = (
            (parsed.type == "tag" and parsed.fetch_spec == "latest")
            or (parsed.type == "range" and parsed.fetch_spec == "*")
        )
        self.tracker_type = "semver" if self.implicit_latest else SPEC_TYPE_MAP[parsed.type]
        self.record: TrackerRecord | None = None

    @property
    def fetch_spec(self) -> str:
        return self.parsed.raw

    @property
    def inflight_key(self) -> str:
        return f"{self.name}:{self.parsed.raw_spec}"

    def already_have(self, ctx: SessionContext) -> bool:
        if self.implicit_latest:
            return self.name in ctx.latest
        return ctx.tracker.contains(self.tracker_type, self.name, self.parsed.fetch_spec)

    def identify(self, manifest: dict[str, Any], ctx: SessionContext) -> str:
        version = manifest.get("version")
        if not version or not isinstance(version, str):
            raise ManifestError(f"清单缺少 version: {self.parsed.raw}")
        if self.implicit_latest:
            ctx.latest[self.name] = version
        if ctx.tracker.contains("semver", self.name, version):
            raise DuplicateSpecError(f"{self.name}@{version}")
        self.record = TrackerRecord(
            filename=make_tarball_name("semver", name=self.name, version=version),
            name=self.name,
            version=version,
            spec=self.parsed.fetch_spec if self.tracker_type == "tag" else "",
            resolved=manifest["_resolved"],
            integrity=manifest.get("_integrity") or "",
        )
        return f"{self.name}:{version}:tarball"

    def result_name(self, manifest: dict[str, Any]) -> str:
        return self.name


class GitAgent:
    """git 仓库"""

    tracker_type = "git"

    def __init__(self, parsed: ParsedSpec) -> None:
        self.parsed = parsed
        try:
            self.key = derive_git_key(parsed)
        except TypeError as e:
            raise ValidationError(str(e)) from e
        self.record: TrackerRecord | None = None

    @property
    def fetch_spec(self) -> str:
        return self.parsed.raw

    @property
    def inflight_key(self) -> str:
        return f"{self.key.repo}:{self.key.spec}"

    def already_have(self, ctx: SessionContext) -> bool:
        return ctx.tracker.contains("git", self.key.repo, self.key.spec)

    def identify(self, manifest: dict[str, Any], ctx: SessionContext) -> str:
        sha = manifest.get("_sha")
        if not isinstance(sha, str) or not RE_HEX40.match(sha):
            raise ManifestError(f"git 清单缺少有效的 _sha: {self.parsed.raw}")
        domain, _, path = self.key.repo.partition("/")
        if not path:
            raise ManifestError(f"无法确定 git 仓库路径: {self.parsed.raw}")
        if ctx.tracker.contains("git", self.key.repo, sha):
            raise DuplicateSpecError(f"{self.key.repo}#{sha}")
        refs = manifest.get("_allRefs") or []
        filename = make_tarball_name("git", domain=domain, path=path, commit=sha)
        self.record = TrackerRecord(
            filename=filename,
            repo=self.key.repo,
            commit=sha,
            refs=[r for r in refs if isinstance(r, str) and r],
            resolved=manifest["_resolved"],
        )
        return filename

    def result_name(self, manifest: dict[str, Any]) -> str:
        return self.parsed.name or _manifest_name(manifest)


class UrlAgent:
    """远程 tarball"""

    tracker_type = "url"

    def __init__(self, parsed: ParsedSpec) -> None:
        self.parsed = parsed
        self.record: TrackerRecord | None = None

    @property
    def fetch_spec(self) -> str:
        return self.parsed.raw

    @property
    def inflight_key(self) -> str:
        if self.parsed.name:
            return f"{self.parsed.name}:{self.parsed.raw_spec}"
        return self.parsed.raw_spec

    def already_have(self, ctx: SessionContext) -> bool:
        return ctx.tracker.contains("url", None, self.parsed.raw_spec)

    def identify(self, manifest: dict[str, Any], ctx: SessionContext) -> str:
        url = self.parsed.raw_spec
        resolved = manifest["_resolved"]
        if ctx.tracker.contains("url", None, url):
            raise DuplicateSpecError(url)
        filename = make_tarball_name("url", url=resolved)
        self.record = TrackerRecord(
            filename=filename,
            spec=url,
            resolved=resolved if resolved != url else "",
            integrity=manifest.get("_integrity") or "",
        )
        return filename

    def result_name(self, manifest: dict[str, Any]) -> str:
        return self.parsed.name or _manifest_name(manifest)


_AGENTS: dict[str, type] = {
    "semver": RegistryAgent,
    "tag": RegistryAgent,
    "git": GitAgent,
    "url": UrlAgent,
}


def make_agent(parsed: ParsedSpec) -> ItemAgent:
    """按下载类型选择实现；npm: 别名按其指向的注册表包处理

    Raises:
        ValidationError: 不支持的说明符类型
    """
    if parsed.type == "alias" and parsed.sub_spec is not None:
        parsed = parsed.sub_spec
    dlt_type = SPEC_TYPE_MAP.get(parsed.type)
    agent_cls = _AGENTS.get(dlt_type or "")
    if agent_cls is None:
        raise ValidationError(f"不支持的说明符类型 '{parsed.type}': {parsed.raw}")
    return agent_cls(parsed)


# =========================================================================
# 共享调度
# =========================================================================

async def _walk_children(
    manifest: dict[str, Any], ctx: SessionContext, policy: WalkPolicy,
) -> list[ItemResult]:
    from pkgstash.services.download.walker import walk_lock_deps, walk_manifest

    shrinkwrap = manifest.get("_shrinkwrap")
    if isinstance(shrinkwrap, dict) and not policy.no_shrinkwrap:
        deps = from_lock_data(shrinkwrap)
        return await walk_lock_deps(deps, ctx, policy.child(top_level=False, shrinkwrap=True))
    return await walk_manifest(manifest, ctx, policy.child(top_level=False))


async def run_item(spec: str, ctx: SessionContext, policy: WalkPolicy) -> list[ItemResult]:
    """处理一个说明符，返回它自身及其依赖的结果（依赖在前）

    Raises:
        ValidationError: 说明符无法解析或类别不支持
        ManifestError: 清单 _resolved 校验失败
        DependencyError / TrackerError / OSError: 上游拉取或登记失败
    """
    parsed = parse(spec)
    agent = make_agent(parsed)
    duplicate = [ItemResult(spec, name=parsed.name or "", duplicate=True)]

    if agent.already_have(ctx):
        logger.debug("已在下载目录中: %s", spec)
        return duplicate

    key = agent.inflight_key
    if not ctx.claim(key):
        logger.debug("已在处理中: %s", spec)
        return duplicate
    held = [key]

    try:
        manifest = await ctx.source.manifest(
            agent.fetch_spec, {"no_shrinkwrap": policy.no_shrinkwrap},
        )
        check_resolved(manifest, spec)

        identity = agent.identify(manifest, ctx)
        if not ctx.claim(identity):
            raise DuplicateSpecError(identity)
        held.append(identity)

        results: list[ItemResult] = []
        if not policy.shrinkwrap:
            results.extend(await _walk_children(manifest, ctx, policy))

        record = agent.record
        if record is None:
            raise ManifestError(f"无法由清单确定下载记录: {spec}")
        fetched = await ctx.source.fetch_tarball(
            agent.fetch_spec,
            ctx.tracker.path / record.filename,
            {"resolved": record.resolved or manifest["_resolved"], "integrity": record.integrity},
        )
        if fetched and fetched.get("integrity"):
            record.integrity = fetched["integrity"]

        ctx.release(*held)
        held = []
        ctx.tracker.add(agent.tracker_type, record)
        logger.info(
            "已下载 %s -> %s", spec, record.filename,
            extra={"spec": spec, "tarball": record.filename},
        )
        results.append(ItemResult(spec, name=agent.result_name(manifest)))
        return results
    except DuplicateSpecError:
        logger.debug("清单解析后发现重复: %s", spec)
        return duplicate
    finally:
        ctx.release(*held)
        ctx.source.discard(agent.fetch_spec)

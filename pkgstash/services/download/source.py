"""上游拉取协作者

PackageSource 协议: 按说明符取清单、把 tarball 存到指定路径。
HttpPackageSource 为默认实现:
- 注册表包: 读取 packument，按版本/范围/标签选出版本
- 远程 tarball: 下载后从包内 package.json 读取清单
- git: 经 CommandExecutor 调用 git clone / rev-parse / archive

网络与子进程调用都是阻塞的，统一放到线程中执行。
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import os
import shutil
import tarfile
import tempfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, urlparse

from pkgstash.core.config import DEFAULT_REGISTRY
from pkgstash.core.dltracker.semver_match import max_satisfying
from pkgstash.core.exceptions import DependencyError
from pkgstash.core.spec_parser import RE_SCP_LIKE, ParsedSpec, parse
from pkgstash.utils.json_io import load_json
from pkgstash.utils.net import registry_base, validate_url_scheme
from pkgstash.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)


class PackageSource(Protocol):
    """上游拉取协议

    manifest() 返回的清单至少带 name / version / _resolved；
    git 清单另带 _sha 与 _allRefs。
    fetch_tarball() 返回 {"integrity": ...}。
    discard() 清理清单阶段为该说明符留下的临时数据，每个条目结束时都会调用；
    tarball 阶段已经消费了这些数据时为空操作。
    """

    async def manifest(self, spec: str, opts: dict[str, Any]) -> dict[str, Any]:
        ...

    async def fetch_tarball(self, spec: str, dest: Path, opts: dict[str, Any]) -> dict[str, Any]:
        ...

    def discard(self, spec: str) -> None:
        ...


def compute_integrity(path: Path) -> str:
    """计算 sha512 SRI 摘要"""
    sha512 = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha512.update(chunk)
    return "sha512-" + base64.b64encode(sha512.digest()).decode("ascii")


def read_tarball_manifest(path: Path) -> dict[str, Any]:
    """从 tarball 顶层目录读取 package.json"""
    try:
        with tarfile.open(path, "r:*") as tf:
            for member in tf.getmembers():
                parts = member.name.lstrip("./").split("/")
                if len(parts) == 2 and parts[1] == "package.json" and member.isfile():
                    fh = tf.extractfile(member)
                    if fh is None:
                        break
                    data = json.loads(fh.read().decode("utf-8"))
                    if not isinstance(data, dict):
                        raise DependencyError(f"package.json 不是 JSON 对象: {path}")
                    return data
    except (tarfile.TarError, OSError, ValueError) as e:
        raise DependencyError(f"无法读取 tarball 中的 package.json: {path}: {e}") from e
    raise DependencyError(f"tarball 中没有 package.json: {path}")


def _unwrap(spec: str) -> ParsedSpec:
    parsed = parse(spec)
    if parsed.type == "alias" and parsed.sub_spec is not None:
        return parsed.sub_spec
    return parsed


class HttpPackageSource:
    """默认上游实现: HTTP 注册表 + 远程 tarball + git 命令行"""

    def __init__(
        self,
        registry: str = DEFAULT_REGISTRY,
        *,
        timeout: int = 60,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.registry = registry_base(registry)
        self.timeout = timeout
        self.executor = executor or get_executor()
        # 清单阶段已下载的远程 tarball / 已克隆的 git 工作区，供随后的 tarball 阶段复用
        self._prefetched: dict[str, Path] = {}
        self._git_work: dict[str, tuple[Path, str]] = {}

    # ------------------------------------------------------------------
    # 协议方法
    # ------------------------------------------------------------------

    async def manifest(self, spec: str, opts: dict[str, Any]) -> dict[str, Any]:
        parsed = _unwrap(spec)
        if parsed.type in ("version", "range", "tag"):
            return await asyncio.to_thread(self._registry_manifest, parsed)
        if parsed.type == "remote":
            return await asyncio.to_thread(self._remote_manifest, parsed)
        if parsed.type == "git":
            return await asyncio.to_thread(self._git_manifest, parsed)
        raise DependencyError(f"不支持的说明符类型 '{parsed.type}': {spec}")

    def discard(self, spec: str) -> None:
        parsed = _unwrap(spec)
        if parsed.type == "remote":
            cached = self._prefetched.pop(parsed.fetch_spec, None)
            if cached is not None:
                cached.unlink(missing_ok=True)
        elif parsed.type == "git":
            entry = self._git_work.pop(parsed.raw, None)
            if entry is not None:
                shutil.rmtree(entry[0], ignore_errors=True)

    async def fetch_tarball(self, spec: str, dest: Path, opts: dict[str, Any]) -> dict[str, Any]:
        parsed = _unwrap(spec)
        if parsed.type == "git":
            await asyncio.to_thread(self._git_archive, parsed, dest)
        else:
            url = opts.get("resolved") or parsed.fetch_spec
            await asyncio.to_thread(self._store_url, url, dest)

        integrity = compute_integrity(dest)
        expected = opts.get("integrity") or ""
        if expected.startswith("sha512-") and expected != integrity:
            dest.unlink(missing_ok=True)
            raise DependencyError(f"完整性校验失败: {spec} (期望 {expected}, 实际 {integrity})")
        logger.info("已保存 tarball: %s", dest.name)
        return {"integrity": integrity}

    # ------------------------------------------------------------------
    # 注册表
    # ------------------------------------------------------------------

    def _get_json(self, url: str) -> Any:
        validate_url_scheme(url, context="registry")
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                return json.loads(resp.read().decode("utf-8"))
        except (urllib.error.HTTPError, urllib.error.URLError, OSError, ValueError) as e:
            raise DependencyError(f"请求注册表失败: {url} - {e}") from e

    def _registry_manifest(self, parsed: ParsedSpec) -> dict[str, Any]:
        name = parsed.name or ""
        doc = self._get_json(self.registry + quote(name, safe="@"))
        versions = doc.get("versions") or {}
        if parsed.type == "tag":
            ver = (doc.get("dist-tags") or {}).get(parsed.fetch_spec)
        elif parsed.type == "version":
            ver = parsed.fetch_spec
        else:
            ver = max_satisfying(parsed.fetch_spec, versions)
        if not ver or ver not in versions:
            raise DependencyError(f"注册表中没有匹配的版本: {parsed.raw}")

        mani = dict(versions[ver])
        dist = mani.get("dist") or {}
        mani["_resolved"] = dist.get("tarball", "")
        mani["_integrity"] = dist.get("integrity", "")
        mani["_from"] = parsed.raw
        logger.debug("注册表解析: %s -> %s@%s", parsed.raw, name, ver)
        return mani

    # ------------------------------------------------------------------
    # 远程 tarball
    # ------------------------------------------------------------------

    def _download(self, url: str, dest: Path) -> None:
        validate_url_scheme(url, context="tarball download")
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        logger.info("下载: %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp, open(part, "wb") as f:  # nosec B310
                shutil.copyfileobj(resp, f)
            os.replace(part, dest)
        except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
            part.unlink(missing_ok=True)
            raise DependencyError(f"下载失败: {url} - {e}") from e

    def _remote_manifest(self, parsed: ParsedSpec) -> dict[str, Any]:
        url = parsed.fetch_spec
        fd, tmp = tempfile.mkstemp(prefix="pkgstash-", suffix=".tgz")
        os.close(fd)
        tmp_path = Path(tmp)
        try:
            self._download(url, tmp_path)
            mani = read_tarball_manifest(tmp_path)
        except DependencyError:
            tmp_path.unlink(missing_ok=True)
            raise
        self._prefetched[url] = tmp_path
        mani["_resolved"] = url
        mani["_integrity"] = compute_integrity(tmp_path)
        mani["_from"] = parsed.raw
        return mani

    def _store_url(self, url: str, dest: Path) -> None:
        cached = self._prefetched.pop(url, None)
        if cached is not None and cached.exists():
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(cached), str(dest))
            return
        self._download(url, dest)

    # ------------------------------------------------------------------
    # git
    # ------------------------------------------------------------------

    def _git(self, args: list[str], cwd: Path) -> str:
        r = self.executor.execute(["git", *args], cwd=str(cwd), timeout=self.timeout * 5)
        if not r.success:
            raise DependencyError(f"git {args[0]} 失败 (rc={r.returncode}): {r.stderr[:300]}")
        return r.stdout.strip()

    @staticmethod
    def _clone_url(parsed: ParsedSpec) -> str:
        if parsed.hosted is not None:
            return parsed.hosted.https_url()
        url = parsed.fetch_spec.split("#", 1)[0]
        if url.startswith("file:"):
            raise DependencyError(f"不支持本地 git 仓库: {parsed.raw}")
        return url

    @staticmethod
    def _resolved_base(clone_url: str) -> str:
        scp = RE_SCP_LIKE.match(clone_url)
        if scp:
            userhost = clone_url.split(":", 1)[0]
            return f"git+ssh://{userhost}/{scp.group(2)}"
        if urlparse(clone_url).scheme in ("http", "https", "ssh"):
            return "git+" + clone_url
        return clone_url

    def _git_manifest(self, parsed: ParsedSpec) -> dict[str, Any]:
        url = self._clone_url(parsed)
        work = Path(tempfile.mkdtemp(prefix="pkgstash-git-"))
        try:
            self._git(["clone", "--quiet", url, str(work)], cwd=work.parent)
            committish = parsed.git_committish
            if committish.startswith("semver:"):
                tags = self._git(["tag", "--list"], cwd=work).splitlines()
                ref = max_satisfying(committish[len("semver:"):], tags, clean=True)
                if ref is None:
                    raise DependencyError(f"没有满足范围的 git 标签: {parsed.raw}")
                committish = ref
            if committish:
                self._git(["checkout", "--quiet", committish], cwd=work)
            sha = self._git(["rev-parse", "HEAD"], cwd=work)
            listed = self._git(
                ["for-each-ref", "--points-at", "HEAD", "--format=%(refname:short)",
                 "refs/tags", "refs/remotes/origin"],
                cwd=work,
            ).splitlines()
            pkg_json = work / "package.json"
            if not pkg_json.is_file():
                raise DependencyError(f"git 仓库中没有 package.json: {parsed.raw}")
            mani = load_json(pkg_json)
            if not isinstance(mani, dict):
                raise DependencyError(f"package.json 不是 JSON 对象: {parsed.raw}")
        except (DependencyError, OSError, ValueError):
            shutil.rmtree(work, ignore_errors=True)
            raise

        refs = []
        for ref in listed:
            if ref == "origin" or ref.endswith("/HEAD"):
                continue
            refs.append(ref[len("origin/"):] if ref.startswith("origin/") else ref)

        self._git_work[parsed.raw] = (work, sha)
        mani["_sha"] = sha
        mani["_allRefs"] = sorted(set(refs))
        mani["_resolved"] = f"{self._resolved_base(url)}#{sha}"
        mani["_from"] = parsed.raw
        logger.debug("git 解析: %s -> %s", parsed.raw, sha)
        return mani

    def _git_archive(self, parsed: ParsedSpec, dest: Path) -> None:
        entry = self._git_work.pop(parsed.raw, None)
        if entry is None:
            self._git_manifest(parsed)
            entry = self._git_work.pop(parsed.raw)
        work, sha = entry
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._git(
                ["archive", "--format=tar.gz", "--prefix=package/", "-o", str(dest), sha],
                cwd=work,
            )
        finally:
            shutil.rmtree(work, ignore_errors=True)

"""锁文件依赖读取

从 npm-shrinkwrap.json / package-lock.json 中收集已线性化的依赖列表，
兼容 lockfileVersion 1（嵌套 dependencies）与 2/3（packages 路径表）。

两者都没有时退回 yarn.lock v1，依赖类别由同目录的 package.json 推导。
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pkgstash.core.spec_parser import RE_PKG_NAME
from pkgstash.core.yarn_lock import YarnEntry, parse_yarn_lock
from pkgstash.utils.json_io import load_json, read_text

logger = logging.getLogger(__name__)

LOCKFILE_NAMES = ("npm-shrinkwrap.json", "package-lock.json")
YARN_LOCK_NAME = "yarn.lock"

RE_NPM_ALIAS = re.compile(r"\bnpm:((?:@[^/@]+/)?[^/@]+)@(.+)$")
RE_PKGNAME_FROM_PATH = re.compile(r"node_modules/((?:@[^/]+/)?[^/]+)$")
RE_NPM_URL = re.compile(r"^https?://registry\.npmjs\.org/")
RE_YARN_URL = re.compile(r"^https?://registry\.yarnpkg\.com/")
NPM_REG_URL = "https://registry.npmjs.org/"


@dataclass
class LockDep:
    """锁文件中的一条依赖"""

    name: str
    version: str
    dev: bool = False
    optional: bool = False
    dev_optional: bool = False
    peer: bool = False
    in_bundle: bool = False
    requires: dict[str, str] = field(default_factory=dict)

    @property
    def spec(self) -> str:
        return f"{self.name}@{self.version}"


def _evaluate_alias(dep: LockDep) -> None:
    m = RE_NPM_ALIAS.search(dep.version)
    if m:
        dep.name, dep.version = m.group(1), m.group(2)


def _collect_v1(deps: dict[str, Any], out: list[LockDep]) -> None:
    for name, src in deps.items():
        if not isinstance(src, dict) or not src.get("version"):
            continue
        dep = LockDep(
            name=name, version=src["version"],
            dev=bool(src.get("dev")),
            optional=bool(src.get("optional")),
            peer=bool(src.get("peer")),
            in_bundle=bool(src.get("bundled")),
            requires=dict(src.get("requires") or {}),
        )
        _evaluate_alias(dep)
        out.append(dep)
        if isinstance(src.get("dependencies"), dict):
            _collect_v1(src["dependencies"], out)


def _collect_packages(pkgs: dict[str, Any], out: list[LockDep]) -> None:
    for pkg_path, src in pkgs.items():
        m = RE_PKGNAME_FROM_PATH.search(pkg_path)
        if not m or not isinstance(src, dict):
            continue
        if src.get("link") or not src.get("version") or not src.get("resolved"):
            continue
        resolved = RE_YARN_URL.sub(NPM_REG_URL, src["resolved"])
        dep = LockDep(
            name=m.group(1), version=src["version"],
            dev=bool(src.get("dev")),
            optional=bool(src.get("optional")),
            dev_optional=bool(src.get("devOptional")),
            peer=bool(src.get("peer")),
            in_bundle=bool(src.get("inBundle")),
            requires=dict(src.get("dependencies") or {}),
        )
        _evaluate_alias(dep)
        if not RE_NPM_URL.match(resolved):
            # git / 远程 tarball 依赖，以解析后的地址作为说明符
            dep.version = resolved
        out.append(dep)


def from_lock_data(lock_data: dict[str, Any]) -> list[LockDep]:
    """从已解析的锁文件对象收集依赖"""
    results: list[LockDep] = []
    pkgs = lock_data.get("packages")
    if isinstance(pkgs, dict):
        _collect_packages(pkgs, results)
    else:
        _collect_v1(lock_data.get("dependencies") or {}, results)
    return results


def from_package_lock(lock_text: str) -> list[LockDep]:
    """从锁文件文本收集依赖

    Raises:
        ValueError: 文本为空或不是合法 JSON 对象
        TypeError: 参数不是字符串
    """
    if lock_text is None or lock_text == "":
        raise ValueError("需要锁文件文本")
    if not isinstance(lock_text, str):
        raise TypeError("需要锁文件文本")
    data = json.loads(lock_text)
    if not isinstance(data, dict):
        raise ValueError("锁文件内容必须是 JSON 对象")
    return from_lock_data(data)


# =========================================================================
# yarn.lock
# =========================================================================

RE_NAME_FROM_SPEC = re.compile(r"^@?[^@]+")


class _Category:
    """保持插入顺序的键集合；迭代过程中追加的键也会被遍历到"""

    def __init__(self) -> None:
        self._order: list[str] = []
        self._members: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def add(self, key: str) -> None:
        if key not in self._members:
            self._members.add(key)
            self._order.append(key)


class _YarnClassifier:
    """从 package.json 出发沿 yarn.lock 的依赖关系遍历，给每条记录归类

    yarn.lock 本身不区分 dev / optional / peer，只能由顶层清单推导。
    """

    def __init__(self, entries: dict[str, YarnEntry]) -> None:
        self.entries = entries
        self.reg = _Category()
        self.opt = _Category()
        self.peer = _Category()
        self.dev = _Category()
        self.dev_opt = _Category()   # 既是可选依赖又被 dev 依赖引用
        self.opt_dev = _Category()   # dev 依赖的可选依赖
        # 解析后的 name@version -> 首次到达它的 yarn.lock 说明符
        self.origin: dict[str, str] = {}

    def resolve(self, spec: str) -> tuple[str, str] | None:
        entry = self.entries.get(spec)
        if entry is None or not entry.resolved:
            return None
        m = RE_NAME_FROM_SPEC.match(spec)
        name = m.group(0) if m else spec
        alias = RE_NPM_ALIAS.search(spec)
        if alias and RE_PKG_NAME.match(alias.group(1)):
            name = alias.group(1)
        version = entry.version
        resolved = RE_YARN_URL.sub(NPM_REG_URL, entry.resolved)
        if spec.endswith(resolved) or not RE_NPM_URL.match(resolved):
            version = resolved
        return name, version

    def _key(self, spec: str) -> str | None:
        ident = self.resolve(spec)
        return f"{ident[0]}@{ident[1]}" if ident else None

    def children(self, key: str, section: str) -> list[str]:
        entry = self.entries[self.origin[key]]
        return [f"{n}@{r}" for n, r in getattr(entry, section).items()]

    def not_reg(self, key: str) -> bool:
        return key not in self.reg

    def not_reg_or_peer(self, key: str) -> bool:
        return key not in self.reg and key not in self.peer

    def collect(
        self, spec: str, into: _Category, accept: Callable[[str], bool] | None = None,
    ) -> None:
        key = self._key(spec)
        if key is None or key in into:
            return
        if accept is not None and not accept(key):
            return
        into.add(key)
        self.origin[key] = spec
        for child in self.children(key, "dependencies"):
            self.collect(child, into, accept)

    def collect_optional(self, key: str, also_peer: bool = False) -> None:
        for child in self.children(key, "optional_dependencies"):
            self.collect(child, self.opt, self.not_reg_or_peer)
            if also_peer:
                self.collect(child, self.peer, self.not_reg)

    def collect_dev(self, spec: str) -> None:
        key = self._key(spec)
        if key is None or key in self.dev or key in self.reg or key in self.peer:
            return
        if key in self.opt:
            self.collect(spec, self.dev_opt, self.not_reg_or_peer)
            return
        self.dev.add(key)
        self.origin[key] = spec
        for child in self.children(key, "dependencies"):
            self.collect_dev(child)

    def collect_optional_of_dev(self, spec: str) -> None:
        key = self._key(spec)
        if key is None or key in self.opt_dev:
            return
        if any(key in c for c in (self.reg, self.peer, self.opt, self.dev, self.dev_opt)):
            return
        self.opt_dev.add(key)
        self.origin[key] = spec
        for child in self.children(key, "dependencies"):
            self.collect_optional_of_dev(child)

    def flags_for(self, key: str) -> dict[str, bool]:
        if key in self.reg:
            return {}
        flags: dict[str, bool] = {}
        if key in self.peer:
            flags["peer"] = True
        if key in self.dev_opt:
            flags["dev_optional"] = True
        elif key in self.opt_dev:
            flags["dev"] = flags["optional"] = True
        elif key in self.opt:
            flags["optional"] = True
        elif key in self.dev:
            flags["dev"] = True
        return flags


def _manifest_section(pkg: dict[str, Any], section: str) -> dict[str, str]:
    deps = pkg.get(section) or {}
    return {n: s for n, s in deps.items() if isinstance(s, str)} if isinstance(deps, dict) else {}


def from_yarn_lock(yarn_text: str, package_json: dict[str, Any]) -> list[LockDep]:
    """从 yarn.lock v1 文本与同目录的 package.json 收集依赖

    package.json 中声明为 bundle 的依赖被跳过；无法从顶层依赖追溯到的记录不输出。

    Raises:
        ValueError: 文本为空、package.json 为空或 yarn.lock 已损坏
        TypeError: 参数类型错误
    """
    if yarn_text is None or yarn_text == "":
        raise ValueError("需要锁文件文本")
    if not isinstance(yarn_text, str):
        raise TypeError("需要锁文件文本")
    if package_json is None or package_json == "":
        raise ValueError("需要 package.json 清单")
    if not isinstance(package_json, dict):
        raise TypeError("需要 package.json 清单")

    entries = parse_yarn_lock(yarn_text)
    walk = _YarnClassifier(entries)

    bundled = package_json.get("bundleDependencies", package_json.get("bundledDependencies")) or []
    if bundled is True:
        bundled = list(_manifest_section(package_json, "dependencies"))
    if not isinstance(bundled, list):
        bundled = []

    def _top(section: str) -> list[str]:
        return [
            f"{n}@{s}" for n, s in _manifest_section(package_json, section).items()
            if n not in bundled
        ]

    for spec in _top("dependencies"):
        walk.collect(spec, walk.reg)
    for spec in _top("peerDependencies"):
        walk.collect(spec, walk.peer, walk.not_reg)
    for spec in _top("optionalDependencies"):
        walk.collect(spec, walk.opt, walk.not_reg_or_peer)

    # 与 npm 写锁文件时的行为一致: 普通 / peer / 可选依赖的可选依赖都归为可选
    for key in walk.reg:
        walk.collect_optional(key)
    for key in walk.peer:
        walk.collect_optional(key, also_peer=True)
    for key in walk.opt:
        walk.collect_optional(key)

    for spec in _top("devDependencies"):
        walk.collect_dev(spec)
    for category in (walk.dev, walk.opt_dev):
        for key in category:
            for child in walk.children(key, "optional_dependencies"):
                walk.collect_optional_of_dev(child)

    results: list[LockDep] = []
    for spec, entry in entries.items():
        ident = walk.resolve(spec)
        if ident is None:
            continue
        key = f"{ident[0]}@{ident[1]}"
        # 跳过重复的说明符，以及追溯不到顶层依赖的记录
        if walk.origin.get(key) != spec:
            continue
        results.append(LockDep(
            name=ident[0], version=ident[1],
            requires=dict(entry.dependencies),
            **walk.flags_for(key),
        ))
    return results


def read_from_dir(lock_dir: str | Path) -> list[LockDep]:
    """读取目录下的锁文件: npm-shrinkwrap.json > package-lock.json > yarn.lock

    yarn.lock 需要同目录的 package.json；找不到可用的锁文件时告警并返回空列表。

    Raises:
        ValueError: 锁文件内容无效
    """
    base = Path(lock_dir)
    for fname in LOCKFILE_NAMES:
        path = base / fname
        if path.is_file():
            data = load_json(path)
            if not isinstance(data, dict):
                raise ValueError(f"锁文件内容必须是 JSON 对象: {path}")
            deps = from_lock_data(data)
            logger.info("从 %s 读取 %d 条依赖", path, len(deps))
            return deps
        logger.debug("没有 %s: %s", fname, base)

    yarn_path = base / YARN_LOCK_NAME
    if yarn_path.is_file():
        pj_path = base / "package.json"
        if pj_path.is_file():
            pkg = load_json(pj_path)
            if not isinstance(pkg, dict):
                raise ValueError(f"package.json 不是 JSON 对象: {pj_path}")
            deps = from_yarn_lock(read_text(yarn_path), pkg)
            logger.info("从 %s 读取 %d 条依赖", yarn_path, len(deps))
            return deps
        logger.warning("处理 yarn.lock 需要同目录下的 package.json: %s", base)

    logger.warning("目录中没有可用的锁文件: %s", base)
    return []

"""下载索引 (Download Tracker)

持久化索引，把包标识映射到下载目录中的 tarball 文件及来源信息。
四张互不相交的表:

  semver[name][version]      -> 记录
  tag[name][tag]             -> {"version": ...}，指向 semver 表
  git[repo][commit | ref]    -> 记录 | {"commit": ...}
  url[host+path]             -> 记录

生命周期:
  - open() 时加载一次 dltracker.json；文件缺失或损坏时按目录重建
  - 仅通过 add() 修改；记录写入后不再变化
  - 会话结束时 serialize() 至多写一次（仅在有修改时）

用法:
    from pkgstash.core.dltracker import DownloadTracker

    tracker = DownloadTracker.open("downloads")
    if not tracker.contains("semver", "lodash", "^4"):
        ...
    tracker.add("semver", {"name": "lodash", "version": "4.17.21", "filename": "..."})
    tracker.serialize()
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pkgstash.core.dltracker.audit import audit_one
from pkgstash.core.dltracker.models import (
    DEFAULT_BRANCHES,
    DLT_TYPES,
    KEY_FIELDS,
    MAPFILE_DESCRIPTION,
    MAPFILE_NAME,
    MAPFILE_VERSION,
    AuditIssue,
    TrackerRecord,
)
from pkgstash.core.dltracker.reconstruct import reconstruct_tables
from pkgstash.core.dltracker.semver_match import max_satisfying
from pkgstash.core.dltracker.validation import (
    expect_dlt_type,
    expect_nonempty_string,
    expect_record,
)
from pkgstash.core.exceptions import TrackerError
from pkgstash.utils.json_io import load_json, save_json
from pkgstash.utils.net import strip_protocol

logger = logging.getLogger(__name__)

Tables = dict[str, dict[str, Any]]


def _empty_tables() -> Tables:
    return {t: {} for t in DLT_TYPES}


def _is_legacy_git(entries: dict[str, Any]) -> bool:
    """旧版 git 记录直接挂在顶层键下，只保证有 repoID 字段"""
    return isinstance(entries.get("repoID"), str)


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class DownloadTracker:
    """下载索引

    持久化数据 (_tables) 与会话内修改标记 (_dirty) 分开保存。
    """

    def __init__(self, path: Path, tables: Tables | None = None, created: str = "") -> None:
        self.path = path
        self._tables: Tables = tables if tables is not None else _empty_tables()
        self._created = created
        self._dirty = False

    # ------------------------------------------------------------------
    # 加载
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, root_dir: str | Path | None = None) -> DownloadTracker:
        """打开下载目录的索引

        Raises:
            TrackerError: 目录不存在 (ENOENT) 或不是目录 (ENOTDIR)，
                          索引文件存在但不可读
        """
        root = Path(root_dir).resolve() if root_dir else Path.cwd()
        try:
            is_dir = root.is_dir()
            exists = root.exists()
        except OSError as e:
            raise TrackerError(f"无法访问下载目录: {root}: {e}", code="EIO", path=str(root)) from e
        if not exists:
            raise TrackerError(f"下载目录不存在: {root}", code="ENOENT", path=str(root))
        if not is_dir:
            raise TrackerError(f"给定路径不是目录: {root}", code="ENOTDIR", path=str(root))

        map_path = root / MAPFILE_NAME
        if not map_path.exists():
            logger.warning("未找到索引文件，尝试按目录重建: %s", root)
            return cls._reconstructed(root)

        try:
            data = load_json(map_path)
        except json.JSONDecodeError as e:
            logger.warning("索引文件无法解析 (%s)，尝试按目录重建: %s", e, map_path)
            return cls._reconstructed(root)
        except (OSError, ValueError) as e:
            logger.error("索引文件不可用: %s", map_path)
            raise TrackerError(f"索引文件不可用: {map_path}: {e}", code="EIO", path=str(map_path)) from e

        if not isinstance(data, dict):
            logger.warning("索引文件内容不是对象，尝试按目录重建: %s", map_path)
            return cls._reconstructed(root)

        tables = _empty_tables()
        for key, section in data.items():
            if key in DLT_TYPES:
                if isinstance(section, dict):
                    tables[key] = section
                else:
                    logger.warning("索引段 '%s' 不是对象，已丢弃", key)
        created = data.get("created", "")
        tracker = cls(root, tables, created=created if isinstance(created, str) else "")
        tracker._repair_schema()
        logger.info("已加载索引: %s", map_path)
        return tracker

    @classmethod
    def _reconstructed(cls, root: Path) -> DownloadTracker:
        tracker = cls(root, reconstruct_tables(root))
        if any(tracker._tables[t] for t in DLT_TYPES):
            tracker._dirty = True
        return tracker

    def _repair_schema(self) -> None:
        """就地修复结构性损坏：丢弃非对象的条目并告警"""
        repaired = 0
        for type_ in ("semver", "tag", "git"):
            table = self._tables[type_]
            for key in list(table):
                entries = table[key]
                if not isinstance(entries, dict):
                    logger.warning("索引 %s 表中 '%s' 的条目不是对象，已丢弃", type_, key)
                    del table[key]
                    repaired += 1
                    continue
                if type_ == "git" and _is_legacy_git(entries):
                    continue
                for sub in list(entries):
                    if not isinstance(entries[sub], dict):
                        logger.warning("索引 %s 表中 '%s' -> '%s' 不是对象，已丢弃", type_, key, sub)
                        del entries[sub]
                        repaired += 1
                if not entries:
                    del table[key]
        url_table = self._tables["url"]
        for key in list(url_table):
            if not isinstance(url_table[key], dict):
                logger.warning("索引 url 表中 '%s' 不是对象，已丢弃", key)
                del url_table[key]
                repaired += 1
        if repaired:
            logger.warning("索引结构已修复: 丢弃 %d 个无效条目", repaired)
            self._dirty = True

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def add(self, type: str, record: dict[str, Any] | TrackerRecord) -> None:  # noqa: A002
        """登记一个已下载的包

        先校验结构，再审计落盘文件，全部通过后才修改索引。

        Raises:
            ValueError / TypeError: 记录结构无效
            TrackerError: 对应文件缺失、不是普通文件、为空或扩展名不对
        """
        expect_dlt_type(type)
        data = record.to_dict() if isinstance(record, TrackerRecord) else record
        expect_record(type, data)

        if type == "tag" and data["spec"] == "latest":
            type = "semver"

        err = audit_one(type, data, self.path)
        if err is not None:
            raise err

        stored = {k: copy.deepcopy(v) for k, v in data.items() if k not in KEY_FIELDS}

        if type == "semver":
            self._tables["semver"].setdefault(data["name"], {})[data["version"]] = stored
        elif type == "tag":
            versions = self._tables["semver"].setdefault(data["name"], {})
            versions.setdefault(data["version"], stored)
            self._tables["tag"].setdefault(data["name"], {})[data["spec"]] = {
                "version": data["version"],
            }
        elif type == "git":
            commits = self._tables["git"].setdefault(data["repo"], {})
            commits[data["commit"]] = stored
            for ref in data.get("refs", []):
                commits[ref] = {"commit": data["commit"]}
        else:
            self._tables["url"][strip_protocol(data["spec"])] = stored

        self._dirty = True
        logger.debug("已登记 %s: %s", type, data["filename"])

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def contains(self, type: str, name: str | None, spec: str) -> bool:  # noqa: A002
        return self.get_data(type, name, spec) is not None

    def get_data(self, type: str, name: str | None, spec: str) -> dict[str, Any] | None:  # noqa: A002
        """按 (类型, 名称/仓库, 说明符) 查询记录

        git 类型的 name 为仓库标识，spec 为提交、引用或 "semver:<范围>"；
        name 为空时按 spec 查旧版 git 记录。url 类型的 name 必须为空。

        Raises:
            ValueError / TypeError: 参数无效
        """
        expect_dlt_type(type)
        if type in ("semver", "tag"):
            expect_nonempty_string(name, "包名")
        elif type == "git":
            if name is not None and not isinstance(name, str):
                raise TypeError("git 仓库标识必须是字符串")
        elif name not in (None, ""):
            raise ValueError("url 类型查询时 name 必须为空")
        if spec is None:
            raise ValueError("缺少包说明符")
        if not isinstance(spec, str):
            raise TypeError("包说明符必须是字符串")

        if type == "tag" and spec in ("", "latest"):
            type, spec = "semver", ""

        logger.debug("查询索引 type=%s, name=%s, spec=%s", type, name, spec)
        result = self._prepared_data(type, name, spec)
        if result is not None:
            result["type"] = type
        return result

    def _prepared_data(self, type: str, name: str | None, spec: str) -> dict[str, Any] | None:  # noqa: A002
        if type == "semver":
            return self._semver_data(name or "", spec)
        if type == "tag":
            return self._tag_data(name or "", spec)
        if type == "git":
            return self._git_data(name, spec)
        return self._url_data(spec)

    def _semver_data(self, name: str, spec: str) -> dict[str, Any] | None:
        versions = self._tables["semver"].get(name)
        if not versions:
            return None
        ver = max_satisfying(spec, versions)
        if ver is None:
            return None
        return {"name": name, "version": ver, **copy.deepcopy(versions[ver])}

    def _tag_data(self, name: str, spec: str) -> dict[str, Any] | None:
        tag = self._tables["tag"].get(name, {}).get(spec)
        if not tag:
            return None
        ver = tag.get("version")
        result: dict[str, Any] = {"name": name, "spec": spec, "version": ver}
        data = self._tables["semver"].get(name, {}).get(ver)
        if data:
            result.update(copy.deepcopy(data))
        return result

    def _git_data(self, repo: str | None, spec: str) -> dict[str, Any] | None:
        if not repo:
            legacy = self._tables["git"].get(spec)
            if not legacy:
                return None
            return {"spec": spec, **copy.deepcopy(legacy)}

        entries = self._tables["git"].get(repo)
        if not entries:
            return None
        if _is_legacy_git(entries):
            # 旧版记录只能按 spec 查询（repo 为空）
            return None

        if spec and spec != "*":
            key: str | None = spec
            if spec.startswith("semver:"):
                key = max_satisfying(spec[len("semver:"):], entries, clean=True)
            data = entries.get(key) if key else None
            if data is None:
                return None
            if "commit" in data:
                commit = data["commit"]
                target = entries.get(commit)
                if target is None:
                    return None
                return {"repo": repo, "commit": commit, "spec": spec, **copy.deepcopy(target)}
            return {"repo": repo, "commit": key, **copy.deepcopy(data)}

        for branch in DEFAULT_BRANCHES:
            alias = entries.get(branch)
            if alias:
                commit = alias.get("commit", branch)
                target = entries.get(commit)
                if target is None:
                    return None
                return {"repo": repo, "commit": commit, **copy.deepcopy(target)}

        # 没有约定的默认分支时，仅当只有一条完整记录才使用它
        full = [k for k, v in entries.items() if v.get("filename")]
        if len(full) == 1:
            return {"repo": repo, "commit": full[0], **copy.deepcopy(entries[full[0]])}
        return None

    def _url_data(self, spec: str) -> dict[str, Any] | None:
        data = self._tables["url"].get(strip_protocol(spec))
        if not data:
            return None
        return {"spec": spec, **copy.deepcopy(data)}

    # ------------------------------------------------------------------
    # 审计
    # ------------------------------------------------------------------

    def audit(self) -> list[AuditIssue]:
        """审计全部记录

        结构性问题就地修复并告警；文件与引用完整性问题只报告不修复。
        """
        self._repair_schema()
        issues: list[AuditIssue] = []

        for name, versions in self._tables["semver"].items():
            for ver, data in versions.items():
                err = audit_one("semver", data, self.path)
                if err is not None:
                    issues.append(AuditIssue({"type": "semver", "name": name, "version": ver, **data}, err))

        for name, tags in self._tables["tag"].items():
            for tag, data in tags.items():
                err = None
                ver = data.get("version")
                if not ver:
                    err = TrackerError("tag 记录缺少 version", code="ENODATA")
                elif ver not in self._tables["semver"].get(name, {}):
                    err = TrackerError("tag 指向的版本不在 semver 表中", code="EORPHANREF")
                if err is not None:
                    issues.append(AuditIssue({"type": "tag", "name": name, "spec": tag, **data}, err))

        for repo, entries in self._tables["git"].items():
            if _is_legacy_git(entries):
                err = audit_one("git", entries, self.path)
                if err is not None:
                    issues.append(AuditIssue({"type": "git", "spec": repo, **entries}, err))
                continue
            for key, data in entries.items():
                err = None
                if "commit" in data:
                    if data["commit"] not in entries:
                        err = TrackerError("git 引用指向的提交不存在", code="EORPHANREF")
                elif not data:
                    err = TrackerError("git 记录没有数据", code="ENODATA")
                else:
                    err = audit_one("git", data, self.path)
                if err is not None:
                    issues.append(AuditIssue({"type": "git", "repo": repo, "commit": key, **data}, err))

        for spec, data in self._tables["url"].items():
            err = audit_one("url", data, self.path)
            if err is not None:
                issues.append(AuditIssue({"type": "url", "spec": spec, **data}, err))

        if issues:
            logger.warning("索引审计发现 %d 个问题", len(issues))
        return issues

    # ------------------------------------------------------------------
    # 持久化
    # ------------------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def serialize(self) -> bool:
        """写出索引文件（原子写入），无修改时不写

        返回是否写入了文件。

        Raises:
            TrackerError: 写入失败
        """
        if not self._dirty:
            logger.debug("索引无变化，跳过写入")
            return False

        out: dict[str, Any] = {t: self._tables[t] for t in DLT_TYPES if self._tables[t]}
        now = _now()
        if self._created:
            out["created"] = self._created
            out["updated"] = now
        else:
            out["created"] = now
        out["description"] = MAPFILE_DESCRIPTION
        out["version"] = MAPFILE_VERSION

        map_path = self.path / MAPFILE_NAME
        try:
            save_json(map_path, out)
        except OSError as e:
            logger.warning("写入索引文件失败: %s", map_path)
            raise TrackerError(f"写入索引文件失败: {map_path}: {e}", code="EIO", path=str(map_path)) from e
        self._created = out["created"]
        self._dirty = False
        logger.info("索引已写入: %s", map_path)
        return True

"""下载索引数据模型

数据类:
- TrackerRecord: 单个下载记录（写入索引前的完整形态）
- AuditIssue: 审计发现的问题
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pkgstash.core.exceptions import TrackerError

MAPFILE_NAME = "dltracker.json"
MAPFILE_VERSION = 2
MAPFILE_DESCRIPTION = (
    "This file is an artifact of the command **pkgstash download**.  "
    "It maps package specs to installation-related metadata and the "
    "corresponding tarball files in this directory.  DO NOT DELETE this file. "
    "Ensure that it travels with the files in the shared directory until the "
    "offline installation has been verified."
)

# 四张互不相交的表
DLT_TYPES = ("semver", "tag", "git", "url")

# 记录中作为表键的字段，存储时从记录副本中剔除
KEY_FIELDS = frozenset(("type", "name", "version", "spec", "repo", "commit"))

# 说明符解析类型 -> 索引表类型
SPEC_TYPE_MAP = {
    "version": "semver",
    "range": "semver",
    "tag": "tag",
    "remote": "url",
    "git": "git",
}

GIT_REMOTES_LEGACY_DIR = "_git-remotes"
DEFAULT_BRANCHES = ("master", "main")
RE_HEX40 = re.compile(r"^[a-f0-9]{40}$")


@dataclass
class TrackerRecord:
    """单个下载记录

    semver/tag 记录需要 name + version（tag 另需 spec），
    git 记录需要 repo + commit，url 记录需要 spec。
    """

    filename: str
    name: str = ""
    version: str = ""
    spec: str = ""
    repo: str = ""
    commit: str = ""
    refs: list[str] = field(default_factory=list)
    resolved: str = ""
    integrity: str = ""

    def to_dict(self) -> dict[str, Any]:
        """转为 add() 接受的字典，空字段省略"""
        data: dict[str, Any] = {"filename": self.filename}
        for key in ("name", "version", "spec", "repo", "commit"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.refs:
            data["refs"] = list(self.refs)
        if self.resolved:
            data["_resolved"] = self.resolved
        if self.integrity:
            data["_integrity"] = self.integrity
        return data


@dataclass
class AuditIssue:
    """审计问题：出问题的记录（含键字段）+ 错误"""

    record: dict[str, Any]
    error: TrackerError

    @property
    def code(self) -> str:
        return self.error.code

    def to_dict(self) -> dict[str, Any]:
        return {"record": self.record, "code": self.code, "message": str(self.error)}

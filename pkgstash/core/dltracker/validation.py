"""下载记录结构校验

缺失或为空的字段抛 ValueError，类型错误抛 TypeError。
所有校验先于任何状态修改执行。
"""

from __future__ import annotations

from typing import Any

from pkgstash.core.dltracker.models import DLT_TYPES, RE_HEX40


def expect_nonempty_string(value: Any, label: str) -> None:
    if value is None or value == "":
        raise ValueError(f"{label} 不能为空")
    if not isinstance(value, str):
        raise TypeError(f"{label} 必须是字符串")


def expect_dlt_type(value: Any) -> None:
    if value is None or value == "":
        raise ValueError("缺少下载类型")
    if not isinstance(value, str):
        raise TypeError("下载类型必须是字符串")
    if value not in DLT_TYPES:
        raise ValueError(f"无法识别的下载类型 '{value}'")


def _expect_field(data: dict, key: str, label: str) -> None:
    if key not in data:
        raise ValueError(f"记录缺少字段 {key} ({label})")
    if not isinstance(data[key], str):
        raise TypeError(f"{label} 必须是字符串")
    if not data[key].strip():
        raise ValueError(f"{label} 不能为空字符串")


def _expect_refs(refs: Any) -> None:
    if not isinstance(refs, list):
        raise TypeError("git 记录的 refs 必须是列表")
    if not refs:
        raise ValueError("git 记录的 refs 至少包含一个引用")
    for ref in refs:
        if not isinstance(ref, str):
            raise TypeError("git 引用必须是字符串")
        if not ref.strip():
            raise ValueError("git 引用不能为空字符串")


def expect_record(type: str, data: Any) -> None:  # noqa: A002
    """按类型校验记录结构

    Raises:
        ValueError: 必需字段缺失或为空
        TypeError: 字段类型错误
    """
    if data is None:
        raise ValueError("缺少包记录")
    if not isinstance(data, dict):
        raise TypeError("包记录必须是字典")
    if not data.get("filename"):
        raise ValueError("包记录必须包含 filename")
    if not isinstance(data["filename"], str):
        raise TypeError("filename 必须是字符串")

    if type in ("semver", "tag"):
        if type == "tag":
            _expect_field(data, "spec", "标签名")
        _expect_field(data, "name", "包名")
        _expect_field(data, "version", "版本")
    elif type == "git":
        _expect_field(data, "repo", "git 仓库标识")
        if "commit" not in data:
            raise ValueError("git 记录必须包含 commit")
        if not isinstance(data["commit"], str):
            raise TypeError("git commit 必须是字符串")
        if not RE_HEX40.match(data["commit"]):
            raise ValueError("git commit 必须是 40 位十六进制串")
        if "refs" in data:
            _expect_refs(data["refs"])
    elif type == "url":
        _expect_field(data, "spec", "URL")

"""tarball 文件名编解码

为每类下载生成文件系统安全的文件名，并能从文件名反推出索引键，
用于索引文件缺失时的目录重建。

命名规则:
  semver: <quote(name)>@<version>.tar.gz          例: %40scope%2Fpkg@1.2.0.tar.gz
  git:    git+<quote(domain/path)>+<commit>.tar.gz
  url:    url+<quote(host+path)>.tar.gz

quote() 对 "@" "+" "/" 全部转义，因此分隔符在编码后的文件名中唯一。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote, unquote

import semantic_version

from pkgstash.utils.net import strip_protocol

DEFAULT_EXT = ".tar.gz"
GIT_PREFIX = "git+"
URL_PREFIX = "url+"

RE_TARBALL_EXT = re.compile(r"\.t(?:gz|ar(?:\.gz)?)$", re.IGNORECASE)
RE_HEX40 = re.compile(r"^[a-f0-9]{40}$")


@dataclass
class ParsedFilename:
    """从文件名解码出的索引键"""

    type: str                 # semver / git / url
    filename: str
    name: str = ""
    version: str = ""
    repo: str = ""
    commit: str = ""
    url: str = ""


def has_tarball_extension(filename: str) -> bool:
    """是否带有可识别的 tarball 扩展名（.tgz / .tar / .tar.gz）"""
    return bool(RE_TARBALL_EXT.search(filename))


def _q(value: str) -> str:
    return quote(value, safe="")


def make_tarball_name(
    type: str,  # noqa: A002
    *,
    name: str = "",
    version: str = "",
    domain: str = "",
    path: str = "",
    commit: str = "",
    url: str = "",
) -> str:
    """按下载类型生成 tarball 文件名

    Raises:
        ValueError: 缺少该类型必需的字段
    """
    if type in ("semver", "tag"):
        if not name or not version:
            raise ValueError("semver 文件名需要 name 和 version")
        return f"{_q(name)}@{_q(version)}{DEFAULT_EXT}"
    if type == "git":
        if not domain or not path or not commit:
            raise ValueError("git 文件名需要 domain、path 和 commit")
        return f"{GIT_PREFIX}{_q(f'{domain}/{path}')}+{commit}{DEFAULT_EXT}"
    if type == "url":
        if not url:
            raise ValueError("url 文件名需要 url")
        return f"{URL_PREFIX}{_q(strip_protocol(url))}{DEFAULT_EXT}"
    raise ValueError(f"不支持的下载类型: {type}")


def parse_filename(filename: str) -> ParsedFilename | None:
    """解码文件名，不符合命名规则时返回 None"""
    m = RE_TARBALL_EXT.search(filename)
    if not m:
        return None
    stem = filename[:m.start()]

    if stem.startswith(GIT_PREFIX):
        body = stem[len(GIT_PREFIX):]
        repo_part, sep, commit = body.rpartition("+")
        if not sep or not repo_part or not RE_HEX40.match(commit):
            return None
        repo = unquote(repo_part)
        if "/" not in repo:
            return None
        return ParsedFilename(type="git", filename=filename, repo=repo, commit=commit)

    if stem.startswith(URL_PREFIX):
        body = stem[len(URL_PREFIX):]
        if not body:
            return None
        return ParsedFilename(type="url", filename=filename, url=unquote(body))

    name_part, sep, version_part = stem.partition("@")
    if not sep or not name_part or not version_part:
        return None
    version = unquote(version_part)
    try:
        semantic_version.Version(version)
    except ValueError:
        return None
    return ParsedFilename(
        type="semver", filename=filename,
        name=unquote(name_part), version=version,
    )

"""包说明符解析

把命令行或清单中的原始说明符解析为结构化的 ParsedSpec：

  - 注册表:  name / name@1.2.3 / name@^1.2 / name@beta / @scope/name@1
  - 别名:    alias@npm:real@^1   （解析为被别名的子说明符）
  - git:     git+https://, git+ssh://, git://, git@host:path,
             github:user/repo, gitlab:, bitbucket:, 以及 user/repo 简写
  - 远程:    http(s):// 指向 tarball 的 URL

本地路径与 file: 说明符不支持，直接拒绝。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

import semantic_version

from pkgstash.core.exceptions import ValidationError

RE_PKG_NAME = re.compile(r"^(?:@[A-Za-z0-9~][\w.~-]*/)?[A-Za-z0-9~][\w.~-]*$")
RE_SHORTCUT = re.compile(r"^(github|gitlab|bitbucket):(.+)$")
RE_GITHUB_SHORTHAND = re.compile(r"^[\w.-]+/[\w.-]+(?:#.*)?$")
RE_SCP_LIKE = re.compile(r"^(?:git\+ssh://)?[^@/\s]+@([^:/\s@]+\.[^:/\s@]+):(?!\d+/)(.+)$")
RE_SCHEME = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):")
RE_TAG_NAME = re.compile(r"^[\w.~-]+$")

HOSTED_DOMAINS = {
    "github": "github.com",
    "gitlab": "gitlab.com",
    "bitbucket": "bitbucket.org",
}
_DOMAIN_TO_HOST = {v: k for k, v in HOSTED_DOMAINS.items()}

GIT_SCHEMES = frozenset(("git", "git+ssh", "git+https", "git+http", "git+file", "ssh"))


@dataclass
class HostedGit:
    """托管 git 平台上的仓库"""

    host: str        # "github" / "gitlab" / "bitbucket"
    user: str
    project: str
    committish: str = ""

    @property
    def domain(self) -> str:
        return HOSTED_DOMAINS[self.host]

    def path(self) -> str:
        return f"{self.user}/{self.project}"

    def https_url(self) -> str:
        return f"https://{self.domain}/{self.path()}.git"


@dataclass
class ParsedSpec:
    """解析后的说明符

    type 取值: version / range / tag / git / remote / alias
    """

    type: str
    raw: str
    raw_spec: str
    fetch_spec: str
    name: str | None = None
    hosted: HostedGit | None = None
    git_committish: str = ""
    sub_spec: ParsedSpec | None = None


def _split_name(raw: str) -> tuple[str | None, str]:
    """拆分 name@spec，前缀不是合法包名时视为无名说明符"""
    if RE_PKG_NAME.match(raw):
        return raw, ""
    at = raw.find("@", 1) if raw.startswith("@") else raw.find("@")
    if at > 0:
        prefix = raw[:at]
        if RE_PKG_NAME.match(prefix) and not RE_SCP_LIKE.match(raw):
            return prefix, raw[at + 1:]
    return None, raw


def _hosted_from_parts(domain: str, path: str, committish: str) -> HostedGit | None:
    host = _DOMAIN_TO_HOST.get(domain.lower())
    if host is None:
        return None
    segments = [s for s in path.strip("/").split("/") if s]
    if len(segments) < 2:
        return None
    if host != "gitlab" and len(segments) != 2:
        return None
    project = segments[-1]
    if project.endswith(".git"):
        project = project[:-4]
    return HostedGit(
        host=host, user="/".join(segments[:-1]),
        project=project, committish=committish,
    )


def _parse_git(raw: str, name: str | None, spec: str) -> ParsedSpec:
    committish = ""
    body = spec
    if "#" in spec:
        body, committish = spec.split("#", 1)

    hosted: HostedGit | None = None
    m = RE_SHORTCUT.match(body)
    if m:
        hosted = _hosted_from_parts(HOSTED_DOMAINS[m.group(1)], m.group(2), committish)
        if hosted is None:
            raise ValidationError(f"无法识别的托管 git 说明符: {raw}")
        return ParsedSpec(
            type="git", raw=raw, raw_spec=spec, name=name,
            fetch_spec=hosted.https_url(), hosted=hosted,
            git_committish=committish,
        )
    if RE_GITHUB_SHORTHAND.match(spec) and not RE_SCHEME.match(spec):
        user, project = body.split("/", 1)
        hosted = HostedGit(host="github", user=user, project=project, committish=committish)
        return ParsedSpec(
            type="git", raw=raw, raw_spec=spec, name=name,
            fetch_spec=hosted.https_url(), hosted=hosted,
            git_committish=committish,
        )

    scp = RE_SCP_LIKE.match(body)
    if scp:
        hosted = _hosted_from_parts(scp.group(1), scp.group(2), committish)
        fetch = body[len("git+ssh://"):] if body.startswith("git+ssh://") else body
    else:
        fetch = body[len("git+"):] if body.startswith("git+") else body
        parsed = urlparse(fetch)
        if parsed.hostname:
            hosted = _hosted_from_parts(parsed.hostname, parsed.path, committish)
    return ParsedSpec(
        type="git", raw=raw, raw_spec=spec, name=name,
        fetch_spec=fetch, hosted=hosted, git_committish=committish,
    )


def _looks_like_git_http(spec: str) -> bool:
    parsed = urlparse(spec.split("#", 1)[0])
    if parsed.path.endswith(".git"):
        return True
    return _hosted_from_parts(parsed.hostname or "", parsed.path, "") is not None


def _clean_version(spec: str) -> str | None:
    candidate = spec.strip().lstrip("=v").strip()
    try:
        return str(semantic_version.Version(candidate))
    except ValueError:
        return None


def _valid_range(spec: str) -> bool:
    try:
        semantic_version.NpmSpec(spec)
    except ValueError:
        return False
    return True


def _parse_registry(raw: str, name: str, spec: str) -> ParsedSpec:
    if spec == "":
        return ParsedSpec(type="tag", raw=raw, raw_spec="", name=name, fetch_spec="latest")
    version = _clean_version(spec)
    if version is not None:
        return ParsedSpec(type="version", raw=raw, raw_spec=spec, name=name, fetch_spec=version)
    if _valid_range(spec):
        return ParsedSpec(type="range", raw=raw, raw_spec=spec, name=name, fetch_spec=spec.strip())
    if RE_TAG_NAME.match(spec):
        return ParsedSpec(type="tag", raw=raw, raw_spec=spec, name=name, fetch_spec=spec)
    raise ValidationError(f"无效的版本/范围/标签: {raw}")


def parse(raw: str) -> ParsedSpec:
    """解析原始说明符

    Raises:
        ValidationError: 空输入、本地路径、不支持的协议或无效版本
    """
    if not isinstance(raw, str):
        raise TypeError("说明符必须是字符串")
    raw = raw.strip()
    if not raw:
        raise ValidationError("说明符不能为空")

    name, spec = _split_name(raw)

    if spec.startswith("npm:"):
        sub = parse(spec[4:])
        if sub.type not in ("version", "range", "tag"):
            raise ValidationError(f"npm: 别名只能指向注册表包: {raw}")
        return ParsedSpec(
            type="alias", raw=raw, raw_spec=spec, name=name,
            fetch_spec=sub.fetch_spec, sub_spec=sub,
        )

    if spec.startswith(("file:", "./", "../", "/", "~/")):
        raise ValidationError(f"不支持本地路径说明符: {raw}")

    if RE_SHORTCUT.match(spec) or RE_SCP_LIKE.match(spec):
        return _parse_git(raw, name, spec)

    scheme = RE_SCHEME.match(spec)
    if scheme:
        proto = scheme.group(1).lower()
        if proto in GIT_SCHEMES:
            return _parse_git(raw, name, spec)
        if proto in ("http", "https"):
            if _looks_like_git_http(spec):
                return _parse_git(raw, name, spec)
            return ParsedSpec(type="remote", raw=raw, raw_spec=spec, name=name, fetch_spec=spec)
        raise ValidationError(f"不支持的说明符协议 '{proto}': {raw}")

    if name is None:
        if RE_GITHUB_SHORTHAND.match(spec):
            return _parse_git(raw, None, spec)
        raise ValidationError(f"无法解析的说明符: {raw}")

    return _parse_registry(raw, name, spec)

"""git 说明符的索引键推导

把 ssh / https / 简写等不同形式的远程地址折叠为同一个仓库标识
(repo = "<域名>/<路径>")，使去重与缓存命中跨形式生效。
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from pkgstash.core.spec_parser import RE_SCP_LIKE, ParsedSpec


@dataclass(frozen=True)
class GitKey:
    repo: str
    spec: str


def derive_git_key(parsed: ParsedSpec) -> GitKey:
    """由解析后的 git 说明符推导 (repo, spec)

    Raises:
        TypeError: 非托管平台且无法按 URL 解析出主机
    """
    if parsed.hosted is not None:
        return GitKey(
            repo=f"{parsed.hosted.domain}/{parsed.hosted.path()}",
            spec=parsed.hosted.committish or "",
        )

    raw_spec = parsed.raw_spec
    scp = RE_SCP_LIKE.match(raw_spec.split("#", 1)[0])
    if scp:
        # git@host:path 形式没有 URL 语义，按 ssh://host/path 处理
        path = "/" + scp.group(2)
        host = scp.group(1)
        fragment = raw_spec.split("#", 1)[1] if "#" in raw_spec else ""
    else:
        u = urlparse(raw_spec)
        if not u.netloc:
            raise TypeError(f"无法从 git 说明符解析仓库地址: {parsed.raw}")
        host = u.netloc.rsplit("@", 1)[-1]
        path = u.path
        fragment = u.fragment
    if path.endswith(".git"):
        path = path[:-4]
    return GitKey(repo=host + path, spec=fragment)

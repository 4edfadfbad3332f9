"""URL 工具: 下载地址校验与 url 表的键"""

from __future__ import annotations

from urllib.parse import urlparse

from pkgstash.core.exceptions import ValidationError

_DOWNLOAD_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """只允许带主机名的 http/https 地址用于下载

    Raises:
        ValidationError: 协议不在白名单内或缺少主机名
    """
    parsed = urlparse(url)
    where = f" ({context})" if context else ""
    if parsed.scheme not in _DOWNLOAD_SCHEMES:
        raise ValidationError(f"不允许的 URL 协议 '{parsed.scheme}'{where}: {url}")
    if not parsed.netloc:
        raise ValidationError(f"URL 缺少主机名{where}: {url}")


def registry_base(url: str) -> str:
    """注册表地址统一以 "/" 结尾，便于直接拼接包名"""
    validate_url_scheme(url, context="registry")
    return url.rstrip("/") + "/"


def strip_protocol(url: str) -> str:
    """去掉协议部分，返回 host + path (+ ?query)

    同一地址的 http/https 形式得到相同的键；无协议的输入原样返回。
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url
    path = parsed.path
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return parsed.netloc + path

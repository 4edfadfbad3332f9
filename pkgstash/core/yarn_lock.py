"""yarn.lock (v1) 解析

只提取下载需要的字段:

    "@scope/a@^1.0.0", "@scope/a@^1.1.0":
      version "1.1.2"
      resolved "https://registry.yarnpkg.com/@scope/a/-/a-1.1.2.tgz#<sha1>"
      integrity sha512-...
      dependencies:
        b "^2.0.0"
      optionalDependencies:
        c "~3.0.0"

一条记录可由多个说明符共享。resolved 中的旧式 sha1 片段会被去掉（git 地址除外）。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from pkgstash.core.exceptions import ValidationError
from pkgstash.core.spec_parser import parse

RE_ENTRY_START = re.compile(r"^[^\s].*:$")
RE_SUBKEY = re.compile(r"^ {2}[^\s]+:$")
RE_SUBVAL = re.compile(r"^ {4}[^\s]+ .+$")
RE_METADATA = re.compile(r"^ {2}[^\s]+ .+$")


@dataclass
class YarnEntry:
    specs: list[str]
    version: str = ""
    resolved: str = ""
    integrity: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    optional_dependencies: dict[str, str] = field(default_factory=dict)


_SUBKEYS = {
    "dependencies": "dependencies",
    "optionalDependencies": "optional_dependencies",
}
_METADATA = ("version", "resolved", "integrity")


def split_quoted(text: str, delim: str) -> list[str]:
    """按分隔符切分，双引号内的分隔符不切分并去掉引号"""
    chunks = re.split(delim, text)
    joiner = " " if delim == " " else ", "
    out: list[str] = []
    i = 0
    while i < len(chunks):
        chunk = chunks[i]
        if len(chunk) >= 2 and chunk.startswith('"') and chunk.endswith('"'):
            out.append(chunk.strip()[1:-1])
        elif chunk.startswith('"'):
            parts = [chunk.lstrip()[1:]]
            while i + 1 < len(chunks):
                i += 1
                nxt = chunks[i]
                if re.search(r'[^\\](\\\\)*"$', nxt):
                    parts.append(nxt.rstrip()[:-1])
                    break
                parts.append(nxt)
            out.append(joiner.join(parts))
        else:
            out.append(chunk.strip())
        i += 1
    return out


def _strip_legacy_hash(resolved: str) -> str:
    try:
        if parse(resolved).type == "git":
            return resolved
    except (ValidationError, TypeError):
        pass
    return resolved.split("#", 1)[0]


def parse_yarn_lock(text: str) -> dict[str, YarnEntry]:
    """解析 yarn.lock 文本，返回 说明符 -> 记录（按文件顺序）

    Raises:
        ValueError: 文件格式无效或已损坏（消息中带行号）
    """
    entries: dict[str, YarnEntry] = {}
    current: YarnEntry | None = None
    subsection: dict[str, str] | None = None

    for lineno, line in enumerate(text.splitlines(), start=1):
        if line.startswith("#"):
            continue
        if line == "":
            current, subsection = None, None
            continue
        if RE_ENTRY_START.match(line):
            specs = split_quoted(line[:-1], r", *")
            current, subsection = YarnEntry(specs), None
            for spec in specs:
                entries[spec] = current
            continue
        if current is not None and RE_SUBKEY.match(line):
            attr = _SUBKEYS.get(line[2:-1])
            # 其他子段（如 peerDependencies）读入后丢弃
            subsection = getattr(current, attr) if attr else {}
            continue
        if current is not None and subsection is not None and RE_SUBVAL.match(line):
            pair = split_quoted(line.lstrip(), " ")
            if len(pair) == 2:
                subsection[pair[0]] = pair[1]
                continue
        if current is not None and RE_METADATA.match(line):
            pair = split_quoted(line.lstrip(), " ")
            if len(pair) == 2:
                key, value = pair
                subsection = None
                if key == "resolved":
                    value = _strip_legacy_hash(value)
                if key in _METADATA:
                    setattr(current, key, value)
                continue
        raise ValueError(f"yarn.lock 格式无效或已损坏 (第 {lineno} 行): {line!r}")
    return entries

"""索引文件缺失时，按目录中的文件名重建索引表

tag 表无法由文件名恢复。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pkgstash.core.dltracker.models import MAPFILE_NAME
from pkgstash.core.filename_codec import parse_filename
from pkgstash.utils.net import strip_protocol

logger = logging.getLogger(__name__)


def reconstruct_tables(root: Path) -> dict[str, dict[str, Any]]:
    """扫描目录，解码每个文件名，返回最小化的 semver / git / url 表"""
    tables: dict[str, dict[str, Any]] = {"semver": {}, "tag": {}, "git": {}, "url": {}}
    for entry in sorted(root.iterdir()):
        if entry.name == MAPFILE_NAME or entry.name.startswith("."):
            continue
        if not entry.is_file():
            continue
        parsed = parse_filename(entry.name)
        if parsed is None:
            logger.warning("无法解析文件名，跳过: %s", entry.name)
            continue
        record = {"filename": entry.name}
        if parsed.type == "semver":
            tables["semver"].setdefault(parsed.name, {})[parsed.version] = record
        elif parsed.type == "git":
            tables["git"].setdefault(parsed.repo, {})[parsed.commit] = record
        else:
            tables["url"][strip_protocol(parsed.url)] = record

    count = sum(len(v) for v in tables["semver"].values()) \
        + sum(len(v) for v in tables["git"].values()) + len(tables["url"])
    logger.info("由目录重建索引: %s (%d 条记录)", root, count)
    return tables

"""下载服务: 一次下载会话的入口

处理顺序:
  1. --package-json 指定的清单依赖（顶层）
  2. --lockfile-dir 中锁文件列出的依赖（顶层，不递归）
  3. 命令行说明符（并发）

会话结束时索引写出一次，并按输入分组给出统计摘要。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pkgstash.core.config import Config, get_config
from pkgstash.core.dltracker import DownloadTracker
from pkgstash.core.exceptions import ValidationError
from pkgstash.core.lockfile import LOCKFILE_NAMES, YARN_LOCK_NAME, read_from_dir
from pkgstash.services.download.session import ItemResult, SessionContext, WalkPolicy
from pkgstash.services.download.source import HttpPackageSource, PackageSource
from pkgstash.services.download.walker import walk_lock_deps, walk_manifest, walk_specs
from pkgstash.utils.json_io import load_json

logger = logging.getLogger(__name__)

PACKAGE_JSON_GROUP = "package.json"
LOCKFILE_GROUP = "lockfile"


def item_stats(item: str, results: list[ItemResult]) -> str:
    """单组结果的统计文本"""
    dup_count = sum(1 for r in results if r.duplicate)
    failed_count = sum(1 for r in results if r.failed_optional and not r.duplicate)
    fresh = len(results) - dup_count - failed_count

    lines: list[str] = []
    if fresh:
        if item in (PACKAGE_JSON_GROUP, LOCKFILE_GROUP):
            lines.append(
                f"\nDownloaded tarballs to satisfy {fresh} "
                f"dependenc{'y' if fresh == 1 else 'ies'} derived from {item}"
            )
        else:
            deps = fresh - 1
            lines.append(
                f"\nDownloaded tarballs to satisfy {item} and {deps} "
                f"dependenc{'y' if deps == 1 else 'ies'}"
            )
    else:
        lines.append(f"\nNothing new to download for {item}")
    if failed_count:
        lines.append(f"(failed to fetch {failed_count} optional packages)")
    if dup_count:
        lines.append(f"({dup_count} duplicate spec{'s' if dup_count > 1 else ''} skipped)")
    return "\n".join(lines)


@dataclass
class DownloadReport:
    """会话结果: 每组输入一项 (组名, 结果列表)"""

    groups: list[tuple[str, list[ItemResult]]] = field(default_factory=list)
    serialized: bool = False

    @property
    def results(self) -> list[list[ItemResult]]:
        return [items for _, items in self.groups]

    def summary(self) -> str:
        stats = "".join(item_stats(name, items) for name, items in self.groups)
        return stats + "\n\ndownload finished."


def _normalize_lockfile_dir(value: str) -> Path:
    path = Path(value)
    if path.name in (*LOCKFILE_NAMES, YARN_LOCK_NAME):
        path = path.parent
    return path


def _package_json_path(value: str) -> Path:
    path = Path(value)
    if path.is_dir():
        path = path / "package.json"
    return path


class DownloadService:
    """下载会话"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        source: PackageSource | None = None,
    ) -> None:
        self.config = config or get_config()
        self.source = source or HttpPackageSource(
            self.config.registry, timeout=self.config.fetch_timeout,
        )

    def policy(self) -> WalkPolicy:
        return WalkPolicy(
            include_dev=self.config.include_dev,
            no_peer=self.config.no_peer,
            no_optional=self.config.no_optional,
            no_shrinkwrap=self.config.no_shrinkwrap,
            top_level=True,
        )

    async def run(
        self,
        specs: Sequence[str] = (),
        *,
        package_json: str | None = None,
        lockfile_dir: str | None = None,
    ) -> DownloadReport:
        """执行一次下载会话

        Raises:
            ValidationError: 没有任何输入
            TrackerError: 下载目录不可用或索引写出失败
            其余上游错误按原样传播（可选依赖的失败除外）
        """
        if not specs and not package_json and not lockfile_dir:
            raise ValidationError(
                "没有指定要下载的包，可使用 --package-json 或 --lockfile-dir 选项"
            )

        if self.config.dl_dir in ("", "."):
            logger.warning("未配置下载目录，使用当前目录")
        tracker = DownloadTracker.open(self.config.dl_dir or None)
        logger.info("下载目录: %s", tracker.path, extra={"dl_dir": tracker.path})

        ctx = SessionContext(tracker=tracker, source=self.source)
        policy = self.policy()
        report = DownloadReport()

        try:
            if package_json:
                pj_path = _package_json_path(package_json)
                manifest = load_json(pj_path)
                if not isinstance(manifest, dict):
                    raise ValidationError(f"package.json 不是 JSON 对象: {pj_path}")
                results = await walk_manifest(manifest, ctx, policy)
                report.groups.append((PACKAGE_JSON_GROUP, results))

            if lockfile_dir:
                deps = read_from_dir(_normalize_lockfile_dir(lockfile_dir))
                if deps:
                    results = await walk_lock_deps(deps, ctx, policy)
                    report.groups.append((LOCKFILE_GROUP, results))

            if specs:
                spec_list = list(specs)
                for spec, results in zip(spec_list, await walk_specs(spec_list, ctx, policy)):
                    report.groups.append((spec, results))
        finally:
            report.serialized = tracker.serialize()

        logger.info("下载会话完成: %d 组输入", len(report.groups))
        return report

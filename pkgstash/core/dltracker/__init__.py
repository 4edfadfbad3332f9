"""下载索引模块

拆分说明:
- models.py: 常量与数据类
- validation.py: 记录结构校验
- semver_match.py: 最大满足版本
- audit.py: 单条记录文件审计
- reconstruct.py: 目录重建
- tracker.py: DownloadTracker
"""

from pkgstash.core.dltracker.models import (
    DLT_TYPES,
    MAPFILE_NAME,
    SPEC_TYPE_MAP,
    AuditIssue,
    TrackerRecord,
)
from pkgstash.core.dltracker.tracker import DownloadTracker

__all__ = [
    "DLT_TYPES",
    "MAPFILE_NAME",
    "SPEC_TYPE_MAP",
    "AuditIssue",
    "DownloadTracker",
    "TrackerRecord",
]

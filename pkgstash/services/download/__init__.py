"""下载服务模块

- session.py: 会话上下文、遍历策略、条目结果
- source.py: 上游拉取协议与默认 HTTP/git 实现
- agents.py: 按说明符类别处理单个条目（去重 / 递归 / 登记）
- walker.py: 依赖类别过滤与并发遍历
- service.py: 下载会话入口与统计摘要
"""

from pkgstash.services.download.service import DownloadReport, DownloadService
from pkgstash.services.download.session import ItemResult, SessionContext, WalkPolicy
from pkgstash.services.download.source import HttpPackageSource, PackageSource

__all__ = [
    "DownloadService",
    "DownloadReport",
    "ItemResult",
    "SessionContext",
    "WalkPolicy",
    "PackageSource",
    "HttpPackageSource",
]

"""统一异常体系

所有业务异常继承 PkgStashError，CLI 层据此输出友好提示。
结构校验类错误沿用内置 ValueError / TypeError，不在此定义。
"""

from __future__ import annotations


class PkgStashError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PkgStashError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(PkgStashError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class DependencyError(PkgStashError):
    """上游拉取（清单或 tarball）失败"""

    code = "DEPENDENCY_ERROR"


class ManifestError(DependencyError):
    """清单的 _resolved 字段缺失或不可用"""

    code = "MANIFEST_ERROR"


class TrackerError(PkgStashError):
    """下载索引相关错误，code 取 ENOTDIR / ENOENT / EFNOTREG 等"""

    def __init__(self, message: str, code: str = "ETRACKER", path: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.path = path


class DuplicateSpecError(PkgStashError):
    """清单拉取后才发现的重复包（内部哨兵，由调度层转为 duplicate 结果）"""

    code = "DUPLICATE_SPEC"

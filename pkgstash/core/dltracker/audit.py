"""单条下载记录的落盘文件审计"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import Any

from pkgstash.core.dltracker.models import GIT_REMOTES_LEGACY_DIR
from pkgstash.core.exceptions import TrackerError
from pkgstash.core.filename_codec import has_tarball_extension


def audit_one(type: str, data: dict[str, Any], root: Path) -> TrackerError | None:  # noqa: A002
    """检查记录对应的文件：存在、普通文件、非空、tarball 扩展名

    返回发现的问题，无问题返回 None。不抛异常。
    """
    filename = data.get("filename")
    if not filename:
        if type == "git" and data.get("repoID"):
            # 旧版索引保存的是克隆目录而非 tarball
            repo_dir = root / GIT_REMOTES_LEGACY_DIR / data["repoID"]
            try:
                st = repo_dir.lstat()
            except FileNotFoundError:
                return TrackerError(f"git 仓库目录不存在: {repo_dir}", code="ENOENT", path=str(repo_dir))
            except OSError as e:
                return TrackerError(f"无法访问 git 仓库目录: {repo_dir}: {e}", code="EIO", path=str(repo_dir))
            if not stat.S_ISDIR(st.st_mode):
                return TrackerError(
                    f"git 仓库路径存在但不是目录: {repo_dir}",
                    code="ENOTDIR", path=str(repo_dir),
                )
            return None
        if type == "git":
            return TrackerError("记录中没有 filename 或 repoID", code="ENODATA")
        return TrackerError("记录中没有 filename", code="ENODATA")

    file_path = (root / filename).resolve()
    try:
        st = file_path.lstat()
    except FileNotFoundError:
        return TrackerError(
            f"包文件 {filename} 不存在于 {file_path.parent}",
            code="ENOENT", path=str(file_path),
        )
    except OSError as e:
        return TrackerError(f"无法访问包文件 {file_path}: {e}", code="EIO", path=str(file_path))

    if not stat.S_ISREG(st.st_mode):
        return TrackerError(f"不是普通文件: {file_path}", code="EFNOTREG", path=str(file_path))
    if not st.st_size:
        return TrackerError(f"文件长度为零: {file_path}", code="EFZEROLEN", path=str(file_path))
    if not has_tarball_extension(filename):
        return TrackerError(f"文件没有 tarball 扩展名: {file_path}", code="EFNAME", path=str(file_path))
    return None

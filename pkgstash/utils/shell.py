"""子进程执行: git 克隆、解析提交、打包都经由这里

CommandExecutor 协议把子进程调用与 HttpPackageSource 解耦，测试时注入假执行器。
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

# 找不到可执行文件 / 超时 时的返回码，与 shell 的约定一致
RC_NOT_FOUND = 127
RC_TIMEOUT = 124

# git 不得交互式索要凭据，否则下载会话会挂起
NON_INTERACTIVE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "echo",
    "GCM_INTERACTIVE": "never",
}


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    def execute(
        self,
        cmd: Sequence[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """在本机执行命令

    启动失败与超时不抛异常，转换为非零返回码，由调用方统一按失败处理。
    """

    def execute(
        self,
        cmd: Sequence[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = list(cmd)
        full_env = {**os.environ, **NON_INTERACTIVE_ENV, **(env or {})}
        logger.debug("执行: %s (cwd=%s)", " ".join(args), cwd)
        try:
            r = subprocess.run(
                args, capture_output=True, text=True,
                cwd=cwd, env=full_env, check=False, timeout=timeout,
            )
        except FileNotFoundError:
            return CommandResult(RC_NOT_FOUND, "", f"找不到命令: {args[0]}")
        except subprocess.TimeoutExpired:
            return CommandResult(RC_TIMEOUT, "", f"命令超时 ({timeout}s): {' '.join(args)}")
        return CommandResult(r.returncode, r.stdout, r.stderr)


_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换进程级默认执行器"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor

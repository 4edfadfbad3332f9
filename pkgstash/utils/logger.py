"""日志配置

只配置 "pkgstash" 命名空间下的日志器，不改动根日志器，
作为库被其他程序引用时不会接管它们的日志输出。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

LOGGER_NAME = "pkgstash"
TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"

# 通过 extra={...} 附带的下载上下文字段
CONTEXT_FIELDS = ("spec", "tarball", "dl_dir")


class JSONFormatter(logging.Formatter):
    """每条记录一行 JSON，便于 CI 收集

        {"timestamp": "...", "level": "INFO", "logger": "pkgstash.services...",
         "message": "...", "spec": "a@^1", "tarball": "a@1.0.0.tar.gz"}

    上下文字段只在记录带有时输出；异常堆栈放在 "exception"。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = str(value)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """为 pkgstash 日志器安装唯一的输出 handler（默认 stderr）

    重复调用会替换之前的 handler；无法识别的级别按 INFO 处理。
    """
    log = logging.getLogger(LOGGER_NAME)
    reset_logging()
    log.setLevel(_parse_level(level))

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    log.addHandler(handler)
    log.propagate = False
    return log


def reset_logging() -> None:
    """移除 setup_logging 安装的 handler，恢复向根日志器传播"""
    log = logging.getLogger(LOGGER_NAME)
    for handler in log.handlers[:]:
        log.removeHandler(handler)
        handler.close()
    log.setLevel(logging.NOTSET)
    log.propagate = True

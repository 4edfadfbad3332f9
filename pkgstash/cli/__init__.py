"""pkgstash 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from pkgstash import __version__
from pkgstash.core.config import init_config
from pkgstash.core.exceptions import ConfigError
from pkgstash.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="pkgstash.yml", help="配置文件路径")
def main(config_path: str) -> None:
    """pkgstash - 离线安装用的包 tarball 下载与索引工具"""
    try:
        cfg = init_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(
        level=os.getenv("PKGSTASH_LOG_LEVEL", cfg.log_level),
        json_output=os.getenv("PKGSTASH_LOG_JSON", "") == "1",
    )


from pkgstash.cli.cmd_download import register as _reg_download  # noqa: E402

_reg_download(main)

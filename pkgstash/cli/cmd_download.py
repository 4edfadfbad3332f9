"""CLI: 下载与索引命令"""

from __future__ import annotations

import asyncio
import dataclasses
import json

import click

from pkgstash.core.config import Config, get_config
from pkgstash.core.dltracker import DLT_TYPES, DownloadTracker
from pkgstash.core.exceptions import PkgStashError

_CLASSES = click.Choice(["dev", "optional", "peer"])


def register(group: click.Group) -> None:
    group.add_command(download)
    group.add_command(audit)
    group.add_command(show)


def _session_config(
    dl_dir: str | None,
    include: tuple[str, ...],
    omit: tuple[str, ...],
    package_lock: bool,
) -> Config:
    """把命令行选项叠加到全局配置上"""
    cfg = get_config()
    changes: dict = {}
    if dl_dir:
        changes["dl_dir"] = dl_dir
    if "optional" in omit and "optional" not in include:
        changes["no_optional"] = True
    if "peer" in omit and "peer" not in include:
        changes["no_peer"] = True
    if "dev" in include:
        changes["include_dev"] = True
    if not package_lock:
        changes["no_shrinkwrap"] = True
    return dataclasses.replace(cfg, **changes)


@click.command()
@click.argument("specs", nargs=-1)
@click.option("--dl-dir", "-d", default=None, help="下载目录（默认取配置，否则当前目录）")
@click.option("--package-json", default=None, help="按此 package.json（文件或所在目录）的依赖下载")
@click.option("-J", "use_cwd_package", is_flag=True, help="等同 --package-json .")
@click.option("--lockfile-dir", default=None, help="按此目录中的锁文件下载")
@click.option("--include", multiple=True, type=_CLASSES, help="包含的依赖类别")
@click.option("--omit", multiple=True, type=_CLASSES, help="排除的依赖类别")
@click.option("--package-lock/--no-package-lock", default=True, help="是否使用包内 shrinkwrap")
def download(
    specs: tuple[str, ...],
    dl_dir: str | None,
    package_json: str | None,
    use_cwd_package: bool,
    lockfile_dir: str | None,
    include: tuple[str, ...],
    omit: tuple[str, ...],
    package_lock: bool,
) -> None:
    """下载包及其依赖的 tarball"""
    from pkgstash.services.download import DownloadService

    if use_cwd_package and not package_json:
        package_json = "."
    cfg = _session_config(dl_dir, include, omit, package_lock)
    try:
        svc = DownloadService(cfg)
        report = asyncio.run(svc.run(
            list(specs), package_json=package_json, lockfile_dir=lockfile_dir,
        ))
    except PkgStashError as e:
        raise click.ClickException(str(e)) from e
    click.echo(report.summary())


@click.command()
@click.option("--dl-dir", "-d", default=None, help="下载目录")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def audit(dl_dir: str | None, as_json: bool) -> None:
    """审计下载目录的索引"""
    try:
        tracker = DownloadTracker.open(dl_dir or get_config().dl_dir)
        issues = tracker.audit()
        tracker.serialize()
    except PkgStashError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps([i.to_dict() for i in issues], ensure_ascii=False, indent=2))
    elif not issues:
        click.echo("索引完好，未发现问题。")
    else:
        for issue in issues:
            rec = issue.record
            key = rec.get("name") or rec.get("repo") or rec.get("spec", "")
            click.echo(f"  [{issue.code:10s}] {rec.get('type', ''):6s} {key}  {issue.error}")
        click.echo(f"共 {len(issues)} 个问题")
    if issues:
        raise SystemExit(1)


@click.command()
@click.argument("type_", metavar="TYPE", type=click.Choice(DLT_TYPES))
@click.argument("key")
@click.argument("spec", default="")
@click.option("--dl-dir", "-d", default=None, help="下载目录")
def show(type_: str, key: str, spec: str, dl_dir: str | None) -> None:
    """查询索引记录

    KEY 依类型为包名、仓库标识（域名/路径）或 URL。
    """
    if type_ == "url":
        name, spec = None, spec or key
    else:
        name = key
    try:
        tracker = DownloadTracker.open(dl_dir or get_config().dl_dir)
        data = tracker.get_data(type_, name, spec)
    except PkgStashError as e:
        raise click.ClickException(str(e)) from e
    except (TypeError, ValueError) as e:
        raise click.BadParameter(str(e)) from e
    if data is None:
        click.echo(f"未找到: {type_} {key} {spec}".rstrip())
        raise SystemExit(1)
    click.echo(json.dumps(data, ensure_ascii=False, indent=2))

"""CLI — 清单相关命令"""

from __future__ import annotations

from pathlib import Path

import click

from wagipack.cli import friendly_errors
from wagipack.core.config import get_config
from wagipack.services.package_service import PackageService
from wagipack.utils.yaml_io import save_yaml


def register(group: click.Group) -> None:
    group.add_command(list_vars)
    group.add_command(new)


@click.command(name="vars")
@click.argument("source", default=".")
def list_vars(source: str) -> None:
    """列出构建条件中引用的变量名"""
    with friendly_errors():
        manifest, _ = PackageService().load(source)
    names = sorted(manifest.referenced_variable_names())
    if not names:
        click.echo("清单中的构建条件没有引用任何变量。")
        return
    for name in names:
        click.echo(name)


def skeleton_manifest(name: str) -> dict:
    """新应用的清单骨架"""
    return {
        "package": {
            "name": name,
            "version": "0.1.0",
            "description": f"{name} WAGI 应用",
        },
        "handler": [
            {"name": f"{name}.wasm", "route": "/", "files": ["static/**/*"]},
        ],
    }


@click.command()
@click.argument("name")
@click.option("--dest", "-d", default=".", help="清单写入目录")
@click.option("--force", is_flag=True, help="覆盖已存在的清单")
def new(name: str, dest: str, force: bool) -> None:
    """生成新应用的清单骨架"""
    path = Path(dest) / get_config().manifest_names[0]
    if path.exists() and not force:
        raise click.ClickException(f"清单已存在: {path} (使用 --force 覆盖)")
    try:
        save_yaml(path, skeleton_manifest(name))
    except OSError as e:
        raise click.ClickException(f"写入清单失败: {path}: {e}") from e
    click.echo(f"已生成: {path}")

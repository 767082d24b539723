"""CLI — 展开与暂存命令"""

from __future__ import annotations

import json
from collections.abc import Callable

import click

from wagipack.cli import _parse_kv_pairs, friendly_errors
from wagipack.core.config import get_config
from wagipack.core.expander import InvoiceVersioning
from wagipack.services.package_service import PackageRequest, PackageService
from wagipack.utils.yaml_io import dump_yaml


def register(group: click.Group) -> None:
    group.add_command(prepare)
    group.add_command(inspect_invoice)


_source_options = [
    click.argument("source", default="."),
    click.option("--var", "variables", multiple=True, help="构建条件变量 (key=value)"),
    click.option(
        "--server", "-s", envvar="BINDLE_URL", default="",
        help="包仓库地址，用于拉取外部引用的包 (默认 $BINDLE_URL)",
    ),
    click.option(
        "--import-dir", default="", help="从本地暂存目录读取外部引用的包",
    ),
]


def source_options(func: Callable) -> Callable:
    """SOURCE 参数及外部包来源选项，prepare 与 inspect 共用"""
    for option in reversed(_source_options):
        func = option(func)
    return func


@click.command()
@source_options
@click.option("--dir", "-d", "staging_dir", default=None, help="暂存目录 (默认取配置)")
@click.option(
    "--versioning", "-v", type=click.Choice(["dev", "production"]), default=None,
    help="版本策略 (默认取配置)",
)
@click.option(
    "--output", "-o", type=click.Choice(["id", "message", "none"]), default="message",
    help="输出格式",
)
def prepare(
    source: str,
    variables: tuple[str, ...],
    server: str,
    import_dir: str,
    staging_dir: str | None,
    versioning: str | None,
    output: str,
) -> None:
    """展开清单并写到本地暂存目录"""
    cfg = get_config()
    req = PackageRequest(
        source=source,
        versioning=InvoiceVersioning.parse(versioning or cfg.versioning),
        values=_parse_kv_pairs(variables),
        server_url=server,
        import_dir=import_dir,
    )
    with friendly_errors():
        result = PackageService(cfg).prepare(req, staging_dir or cfg.staging_dir)

    package_id = result.invoice.package_id
    if output == "id":
        click.echo(str(package_id))
    elif output == "message":
        click.echo(f"id:      {package_id}")
        click.echo(f"暂存于:  {result.staged_dir}")


@click.command(name="inspect")
@source_options
@click.option(
    "--versioning", "-v", type=click.Choice(["dev", "production"]), default="production",
    show_default=True, help="版本策略",
)
@click.option(
    "--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml",
    show_default=True, help="输出格式",
)
def inspect_invoice(
    source: str,
    variables: tuple[str, ...],
    server: str,
    import_dir: str,
    versioning: str,
    fmt: str,
) -> None:
    """展开清单并打印 invoice（不写任何文件）"""
    req = PackageRequest(
        source=source,
        versioning=InvoiceVersioning.parse(versioning),
        values=_parse_kv_pairs(variables),
        server_url=server,
        import_dir=import_dir,
    )
    with friendly_errors():
        result = PackageService().build(req)

    data = result.invoice.to_dict()
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        click.echo(dump_yaml(data), nl=False)

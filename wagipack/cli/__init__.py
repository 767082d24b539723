"""wagipack 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

import click

from wagipack import __version__
from wagipack.core.config import DEFAULT_CONFIG_FILE, init_config
from wagipack.core.exceptions import WagipackError
from wagipack.utils.logger import setup_logging


def _parse_kv_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    """解析 key=value 参数对"""
    result: dict[str, str] = {}
    for p in pairs:
        if "=" not in p:
            raise click.BadParameter(f"'{p}' 不是 key=value 格式", param_hint="--var")
        k, v = p.split("=", 1)
        result[k.strip()] = v.strip()
    return result


@contextmanager
def friendly_errors() -> Iterator[None]:
    """把领域异常转换为 click 错误输出（退出码 1，不打印堆栈）"""
    try:
        yield
    except WagipackError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE,
    show_default=True, help="配置文件路径",
)
def main(config_path: str) -> None:
    """wagipack - WAGI 应用清单打包工具"""
    setup_logging(
        level=os.getenv("WAGIPACK_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("WAGIPACK_LOG_JSON", "") == "1",
    )
    with friendly_errors():
        init_config(config_path)


# 注册各领域子命令
from wagipack.cli.cmd_package import register as _reg_package  # noqa: E402
from wagipack.cli.cmd_manifest import register as _reg_manifest  # noqa: E402

_reg_package(main)
_reg_manifest(main)

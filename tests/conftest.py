"""测试套共享 fixture — 应用目录构造 + 外部包 invoice 构造"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from wagipack.core import config as config_module
from wagipack.core.invoice import (
    HANDLER_ID_ANNOTATION,
    Condition,
    Group,
    Invoice,
    Label,
    PackageId,
    Parcel,
)


@pytest.fixture(autouse=True)
def reset_config():
    """全局配置单例在用例之间互不影响"""
    config_module._current = None
    yield
    config_module._current = None


@pytest.fixture(autouse=True)
def restore_logging():
    """CLI 入口会重新配置根日志器，用例结束后还原"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def cli_runner():
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def app_dir(tmp_path):
    """构造应用目录: write(相对路径, 内容) 写文件，manifest(dict) 写清单"""

    class AppDir:
        root: Path = tmp_path

        def write(self, rel: str, content: bytes | str = b"x") -> Path:
            p = tmp_path / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                content = content.encode("utf-8")
            p.write_bytes(content)
            return p

        def manifest(self, data: dict, name: str = "wagipack.yml") -> Path:
            p = tmp_path / name
            p.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
            return p

    return AppDir()


def _parcel(
    name: str,
    *,
    sha: str | None = None,
    handler_id: str | None = None,
    member_of: list[str] | None = None,
    requires: list[str] | None = None,
) -> Parcel:
    annotations = {HANDLER_ID_ANNOTATION: handler_id} if handler_id else None
    conditions = None
    if member_of or requires:
        conditions = Condition(member_of=member_of, requires=requires)
    return Parcel(
        label=Label(
            name=name, sha256=sha or f"sha-{name}", media_type="application/wasm",
            size=1, annotations=annotations,
        ),
        conditions=conditions,
    )


@pytest.fixture
def make_parcel():
    return _parcel


@pytest.fixture
def shared_invoice():
    """外部包 shared/1.0.0

    handler "static" (static.wasm) requires g1;
    g1 = {a.js (requires g2)}, g2 = {b.js (requires g1)}，g1/g2 成环。
    """
    return Invoice(
        package_id=PackageId("shared", "1.0.0"),
        parcels=[
            _parcel("static.wasm", handler_id="static", requires=["g1"]),
            _parcel("a.js", member_of=["g1"], requires=["g2"]),
            _parcel("b.js", member_of=["g2"], requires=["g1"]),
            _parcel("lonely.wasm", handler_id="lonely"),
        ],
        groups=[Group("g1"), Group("g2")],
    )

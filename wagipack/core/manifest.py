"""应用清单模型

清单 (wagipack.yml) 声明一个 WAGI 应用由哪些模块组成:

    package:
      name: weather
      version: "1.2.4"
    handler:
      - name: out/fake.wasm          # 本地模块
        route: /fake
        files: ["scripts/*.js"]
      - external:                    # 引用其他包中已发布的 handler
          package_id: shared/1.0.0
          handler_id: static
        route: /static
        condition: "$env == 'prod'"
    export:
      - name: out/lib.wasm
        id: lib

解析后得到不可变的 Manifest，条目按 handler 在前、export 在后的文件顺序排列。
任何未知字段、缺失字段或类型错误都是 ManifestError。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

import yaml

from wagipack.core.build_condition import ALWAYS, BuildCondition, parse_condition
from wagipack.core.exceptions import (
    ConditionSyntaxError,
    ManifestError,
    NoEntriesError,
    ValidationError,
)
from wagipack.core.invoice import PackageId
from wagipack.utils.yaml_io import read_text

logger = logging.getLogger(__name__)

_TOP_LEVEL_KEYS = frozenset(("package", "annotations", "handler", "export"))
_PACKAGE_KEYS = frozenset(("name", "version", "description", "authors"))
_HANDLER_KEYS = frozenset(("name", "external", "route", "files", "condition"))
_EXTERNAL_KEYS = frozenset(("package_id", "handler_id"))
_EXPORT_KEYS = frozenset(("name", "id", "files", "condition"))


# =========================================================================
# 条目
# =========================================================================


@dataclass(frozen=True)
class ExternalRef:
    """指向其他包中某个 handler 的引用"""

    package_id: PackageId
    handler_id: str

    def __str__(self) -> str:
        return f"{self.package_id}:{self.handler_id}"


@dataclass(frozen=True)
class LocalHandler:
    module_path: str
    route: str
    files: tuple[str, ...] | None = None
    condition: BuildCondition = ALWAYS

    def describe(self) -> str:
        return f"handler {self.module_path} (route {self.route})"


@dataclass(frozen=True)
class ExternalHandler:
    external_ref: ExternalRef
    route: str
    files: tuple[str, ...] | None = None
    condition: BuildCondition = ALWAYS

    def describe(self) -> str:
        return f"handler {self.external_ref} (route {self.route})"


@dataclass(frozen=True)
class Export:
    module_path: str
    export_id: str
    files: tuple[str, ...] = ()
    condition: BuildCondition = ALWAYS

    def describe(self) -> str:
        return f"export {self.export_id} ({self.module_path})"


Entry = Union[LocalHandler, ExternalHandler, Export]


# =========================================================================
# 清单
# =========================================================================


@dataclass(frozen=True)
class Manifest:
    package_name: str
    package_version: str  # 可能是模板，不按 semver 校验
    entries: tuple[Entry, ...]
    description: str | None = None
    authors: tuple[str, ...] | None = None
    annotations: Mapping[str, str] | None = None

    @classmethod
    def parse(cls, raw_text: str, source: str = "") -> Manifest:
        """从 YAML 文本解析清单"""
        try:
            data = yaml.safe_load(raw_text)
        except yaml.YAMLError as e:
            raise ManifestError(f"{_where(source)}YAML 语法错误: {e}") from e
        return cls.from_dict(data, source=source)

    @classmethod
    def from_dict(cls, data: Any, source: str = "") -> Manifest:
        """从已加载的映射解析清单"""
        where = _where(source)
        if not isinstance(data, dict):
            raise ManifestError(f"{where}清单顶层必须是映射")
        _reject_unknown(data, _TOP_LEVEL_KEYS, "清单顶层", where)

        package = data.get("package")
        if not isinstance(package, dict):
            raise ManifestError(f"{where}缺少 [package] 段")
        _reject_unknown(package, _PACKAGE_KEYS, "[package]", where)

        authors = _optional_str_list(package, "authors", "[package]", where)
        entries = [
            _parse_handler(h, where)
            for h in _table_list(data, "handler", where)
        ] + [
            _parse_export(e, where)
            for e in _table_list(data, "export", where)
        ]
        if not entries:
            raise NoEntriesError(f"{where}清单中没有定义任何 handler 或 export")

        manifest = cls(
            package_name=_required_str(package, "name", "[package]", where),
            package_version=_required_str(package, "version", "[package]", where),
            entries=tuple(entries),
            description=_optional_str(package, "description", "[package]", where),
            authors=tuple(authors) if authors is not None else None,
            annotations=_optional_str_map(data, "annotations", where),
        )
        logger.debug(
            "清单已解析: %s/%s, %d 个条目",
            manifest.package_name, manifest.package_version, len(entries),
        )
        return manifest

    def entries_matching(self, values: Mapping[str, str]) -> list[Entry]:
        """按构建条件过滤条目"""
        kept = []
        for entry in self.entries:
            if entry.condition.should_build(values):
                kept.append(entry)
            else:
                logger.debug("条件不满足，跳过 %s: %s", entry.describe(), entry.condition)
        return kept

    def referenced_variable_names(self) -> set[str]:
        """所有条件中引用的变量名"""
        names: set[str] = set()
        for entry in self.entries:
            names |= entry.condition.value_refs()
        return names

    def external_refs(self, values: Mapping[str, str] | None = None) -> list[ExternalRef]:
        """外部引用列表；给定 values 时只看参与构建的条目"""
        entries = self.entries if values is None else self.entries_matching(values)
        return [e.external_ref for e in entries if isinstance(e, ExternalHandler)]


def load_manifest(path: str | Path) -> Manifest:
    """读取并解析清单文件"""
    p = Path(path)
    try:
        text = read_text(p)
    except (OSError, ValueError) as e:
        raise ManifestError(f"无法读取清单 {p}: {e}") from e
    return Manifest.parse(text, source=str(p))


def find_manifest(path: str | Path, names: list[str]) -> Path:
    """定位清单文件

    path 是文件时直接返回；是目录时在其中查找 names 中的文件名，
    恰好找到一个才算成功。
    """
    p = Path(path)
    if p.is_file():
        return p
    if not p.is_dir():
        raise ManifestError(f"清单不存在: {p}")
    candidates = [p / n for n in names if (p / n).is_file()]
    if not candidates:
        raise ManifestError(
            f"目录 {p} 中没有清单文件，请创建 {names[0]}"
        )
    if len(candidates) > 1:
        found = ", ".join(c.name for c in candidates)
        raise ManifestError(f"目录 {p} 中有多个清单文件 ({found})，请指定具体文件")
    return candidates[0]


# =========================================================================
# 解析辅助
# =========================================================================


def _where(source: str) -> str:
    return f"{source}: " if source else ""


def _reject_unknown(table: dict, allowed: frozenset[str], label: str, where: str) -> None:
    unknown = sorted(str(k) for k in table if k not in allowed)
    if unknown:
        raise ManifestError(f"{where}{label} 中有未知字段: {', '.join(unknown)}")


def _required_str(table: dict, key: str, label: str, where: str) -> str:
    if key not in table:
        raise ManifestError(f"{where}{label} 缺少字段 '{key}'")
    value = _optional_str(table, key, label, where)
    if not value:
        raise ManifestError(f"{where}{label} 字段 '{key}' 不能为空")
    return value


def _optional_str(table: dict, key: str, label: str, where: str) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ManifestError(
            f"{where}{label} 字段 '{key}' 必须是字符串 "
            f"(实际为 {type(value).__name__}，数字形式的值请加引号)"
        )
    return value


def _optional_str_list(table: dict, key: str, label: str, where: str) -> list[str] | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestError(f"{where}{label} 字段 '{key}' 必须是字符串列表")
    return value


def _optional_str_map(table: dict, key: str, where: str) -> dict[str, str] | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ManifestError(f"{where}'{key}' 必须是 字符串 -> 字符串 的映射")
    return dict(value)


def _table_list(data: dict, key: str, where: str) -> list[dict]:
    tables = data.get(key)
    if tables is None:
        return []
    if not isinstance(tables, list) or not all(isinstance(t, dict) for t in tables):
        raise ManifestError(f"{where}[[{key}]] 必须是表的列表")
    return tables


def _condition_of(table: dict, label: str, where: str) -> BuildCondition:
    text = _optional_str(table, "condition", label, where)
    try:
        return parse_condition(text)
    except ConditionSyntaxError as e:
        raise e.with_context(f"{where}{label}") from e


def _files_of(table: dict, label: str, where: str) -> tuple[str, ...] | None:
    files = _optional_str_list(table, "files", label, where)
    return tuple(files) if files is not None else None


def _parse_external(value: Any, label: str, where: str) -> ExternalRef:
    if not isinstance(value, dict):
        raise ManifestError(f"{where}{label} 的 external 必须是表")
    _reject_unknown(value, _EXTERNAL_KEYS, f"{label} external", where)
    package_text = _required_str(value, "package_id", f"{label} external", where)
    try:
        package_id = PackageId.parse(package_text)
    except ValidationError as e:
        raise ManifestError(f"{where}{label}: {e}") from e
    return ExternalRef(
        package_id=package_id,
        handler_id=_required_str(value, "handler_id", f"{label} external", where),
    )


def _parse_handler(table: dict, where: str) -> Entry:
    route = _required_str(table, "route", "[[handler]]", where)
    label = f"[[handler]] (route {route})"
    _reject_unknown(table, _HANDLER_KEYS, label, where)

    has_name = table.get("name") is not None
    has_external = table.get("external") is not None
    if has_name == has_external:
        raise ManifestError(
            f"{where}route {route} 的 handler 必须且只能指定 name 或 external 之一"
        )

    condition = _condition_of(table, label, where)
    files = _files_of(table, label, where)
    if has_name:
        return LocalHandler(
            module_path=_required_str(table, "name", label, where),
            route=route, files=files, condition=condition,
        )
    return ExternalHandler(
        external_ref=_parse_external(table["external"], label, where),
        route=route, files=files, condition=condition,
    )


def _parse_export(table: dict, where: str) -> Export:
    _reject_unknown(table, _EXPORT_KEYS, "[[export]]", where)
    module_path = _required_str(table, "name", "[[export]]", where)
    label = f"[[export]] ({module_path})"
    return Export(
        module_path=module_path,
        export_id=_required_str(table, "id", label, where),
        files=_files_of(table, label, where) or (),
        condition=_condition_of(table, label, where),
    )

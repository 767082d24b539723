"""清单展开引擎

把 Manifest 展开为 Invoice:

  1. 按构建条件过滤条目
  2. 每个条目生成一个 group
  3. 每个条目生成一个主 parcel（handler / export 模块本身），requires 自己的 group
  4. 外部 handler 的传递依赖作为其 group 的成员（只引用不暂存）
  5. 每个条目 files 中的 glob 匹配到的文件作为其 group 的成员
  6. 4、5 两类 parcel 各自按 (sha256, name) 合并 group 成员关系
  7. 本地文件与外部依赖重名则报错
  8. 组装 invoice，按版本策略生成最终版本号

外部包 invoice 由调用方预先拉取后通过 external_invoices 传入。
任何一步失败都立即抛出，不会返回部分结果。
"""

from __future__ import annotations

import copy
import glob
import hashlib
import logging
import mimetypes
import os
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from pathlib import Path

from wagipack.core.dep.closure import InvoiceResolver
from wagipack.core.exceptions import (
    DependencyError,
    ExternalHandlerNotFoundError,
    ExternalInvoiceNotFoundError,
    FilesystemError,
    NameClashError,
)
from wagipack.core.invoice import (
    DO_NOT_STAGE_ANNOTATION,
    HANDLER_ID_ANNOTATION,
    Condition,
    FeatureMap,
    Group,
    Invoice,
    Label,
    PackageId,
    Parcel,
    wagi_feature,
)
from wagipack.core.manifest import Entry, Export, ExternalHandler, LocalHandler, Manifest

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "application/octet-stream"
_MEDIA_TYPE_OVERRIDES = {".wasm": "application/wasm"}
_CHUNK_SIZE = 64 * 1024


class InvoiceVersioning(Enum):
    """invoice 版本策略"""

    DEV = "dev"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, text: str) -> InvoiceVersioning:
        """"production" 以外的任何值都按开发版本处理"""
        return cls.PRODUCTION if text == "production" else cls.DEV


def current_user() -> str | None:
    return os.environ.get("USER") or os.environ.get("USERNAME") or None


def mangle_version(
    version: str,
    versioning: InvoiceVersioning,
    *,
    now: datetime | None = None,
    user: str | None = None,
) -> str:
    """开发版本追加 -<用户>-<本地时间戳，精确到毫秒>，生产版本原样返回"""
    if versioning is InvoiceVersioning.PRODUCTION:
        return version
    now = now or datetime.now()
    user = user if user is not None else current_user()
    user_part = f"-{user}" if user else ""
    stamp = now.strftime("%Y.%m.%d.%H.%M.%S") + f".{now.microsecond // 1000:03d}"
    return f"{version}{user_part}-{stamp}"


def group_name(entry: Entry) -> str:
    """条目对应的 group 名，只取决于条目本身"""
    if isinstance(entry, LocalHandler):
        return f"{entry.module_path}-files"
    if isinstance(entry, ExternalHandler):
        ref = entry.external_ref
        return f"import:{ref.package_id}:{ref.handler_id}-at-{entry.route}-files"
    if isinstance(entry, Export):
        return f"{entry.module_path}-{entry.export_id}-files"
    raise TypeError(f"未知的条目类型: {type(entry).__name__}")


def guess_media_type(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _MEDIA_TYPE_OVERRIDES:
        return _MEDIA_TYPE_OVERRIDES[suffix]
    return mimetypes.guess_type(path.name)[0] or DEFAULT_MEDIA_TYPE


def file_digest(path: Path) -> tuple[str, int]:
    """返回 (sha256 十六进制, 字节数)"""
    sha256 = hashlib.sha256()
    size = 0
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha256.update(chunk)
            size += len(chunk)
    return sha256.hexdigest(), size


def _conditions(member_of: str | None = None, requires: str | None = None) -> Condition:
    return Condition(
        member_of=[member_of] if member_of else None,
        requires=[requires] if requires else None,
    )


def merge_memberships(parcels: list[Parcel]) -> list[Parcel]:
    """按 (sha256, name) 合并 parcel

    同一内容同一名字只保留一个 parcel，memberOf 取并集（保持首次出现顺序、
    不重复），requires 取第一次出现时的值。
    """
    merged: dict[tuple[str, str], Parcel] = {}
    for parcel in parcels:
        key = (parcel.label.sha256, parcel.label.name)
        first = merged.get(key, parcel)
        groups = list(dict.fromkeys(first.member_groups() + parcel.member_groups()))
        requires = first.conditions.requires if first.conditions else None
        merged[key] = Parcel(
            label=first.label,
            conditions=Condition(
                member_of=groups or None,
                requires=list(requires) if requires is not None else None,
            ),
        )
    return list(merged.values())


def check_name_clashes(external: list[Parcel], files: list[Parcel]) -> None:
    """本地文件不能与外部依赖同名，否则两者会互相遮蔽"""
    external_names = {p.label.name for p in external}
    clashes = sorted({p.label.name for p in files if p.label.name in external_names})
    if clashes:
        raise NameClashError(clashes)


@dataclass
class ExpansionContext:
    """一次展开的全部输入（清单除外）"""

    relative_to: Path
    versioning: InvoiceVersioning = InvoiceVersioning.DEV
    external_invoices: Mapping[PackageId, Invoice] = field(default_factory=dict)
    build_values: Mapping[str, str] = field(default_factory=dict)
    max_workers: int = 1

    def to_absolute(self, pattern: str) -> Path:
        return self.relative_to / pattern

    def to_relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.relative_to).as_posix()
        except ValueError as e:
            raise FilesystemError(f"{path} 不在基准目录 {self.relative_to} 下") from e

    def mangle_version(self, version: str) -> str:
        return mangle_version(version, self.versioning)


class Expander:
    """清单展开器"""

    def __init__(self, context: ExpansionContext) -> None:
        self.context = context

    def expand(self, manifest: Manifest) -> Invoice:
        entries = manifest.entries_matching(self.context.build_values)
        skipped = len(manifest.entries) - len(entries)
        if skipped:
            logger.info("构建条件排除了 %d 个条目", skipped)

        groups = [Group(name=group_name(e)) for e in entries]
        primary = self._run_all([partial(self._primary_parcel, e) for e in entries])
        external = merge_memberships(self._external_dependency_parcels(entries))
        files = merge_memberships(self._run_all(self._file_parcel_tasks(entries)))
        check_name_clashes(external, files)

        package_id = PackageId(
            name=manifest.package_name,
            version=self.context.mangle_version(manifest.package_version),
        )
        invoice = Invoice(
            package_id=package_id,
            description=manifest.description,
            authors=list(manifest.authors) if manifest.authors is not None else None,
            annotations=dict(manifest.annotations) if manifest.annotations is not None else None,
            parcels=primary + external + files,
            groups=groups,
        )
        logger.info(
            "展开完成: %s, %d 个 parcel (外部依赖 %d, 文件 %d), %d 个 group",
            package_id, len(invoice.parcels), len(external), len(files), len(groups),
        )
        return invoice

    # ------------------------------------------------------------------
    # 主 parcel
    # ------------------------------------------------------------------

    def _primary_parcel(self, entry: Entry) -> Parcel:
        group = group_name(entry)
        if isinstance(entry, LocalHandler):
            return self._local_parcel(
                self.context.to_absolute(entry.module_path), entry,
                feature=wagi_feature(entry.route), requires=group,
            )
        if isinstance(entry, ExternalHandler):
            _, source = self._external_source(entry)
            return Parcel(
                label=Label(
                    name=source.label.name,
                    sha256=source.label.sha256,
                    media_type=source.label.media_type,
                    size=source.label.size,
                    feature=wagi_feature(entry.route),
                    annotations={DO_NOT_STAGE_ANNOTATION: "true"},
                ),
                conditions=_conditions(requires=group),
            )
        if isinstance(entry, Export):
            return self._local_parcel(
                self.context.to_absolute(entry.module_path), entry,
                feature=wagi_feature(),
                annotations={HANDLER_ID_ANNOTATION: entry.export_id},
                requires=group,
            )
        raise TypeError(f"未知的条目类型: {type(entry).__name__}")

    def _local_parcel(
        self,
        path: Path,
        entry: Entry,
        *,
        feature: FeatureMap,
        annotations: dict[str, str] | None = None,
        member_of: str | None = None,
        requires: str | None = None,
    ) -> Parcel:
        try:
            sha256, size = file_digest(path)
        except OSError as e:
            raise FilesystemError(f"无法读取 {path} ({entry.describe()}): {e}") from e
        return Parcel(
            label=Label(
                name=self.context.to_relative(path),
                sha256=sha256,
                media_type=guess_media_type(path),
                size=size,
                feature=feature,
                annotations=annotations,
            ),
            conditions=_conditions(member_of=member_of, requires=requires),
        )

    # ------------------------------------------------------------------
    # 外部依赖
    # ------------------------------------------------------------------

    def _external_source(self, entry: ExternalHandler) -> tuple[Invoice, Parcel]:
        ref = entry.external_ref
        invoice = self.context.external_invoices.get(ref.package_id)
        if invoice is None:
            raise ExternalInvoiceNotFoundError(
                f"{entry.describe()}: 外部包 {ref.package_id} 的 invoice 未预取"
            )
        try:
            return invoice, InvoiceResolver(invoice).handler(ref.handler_id)
        except ExternalHandlerNotFoundError as e:
            raise ExternalHandlerNotFoundError(f"外部引用 {ref}: {e}") from e

    def _external_dependency_parcels(self, entries: list[Entry]) -> list[Parcel]:
        parcels: list[Parcel] = []
        for entry in entries:
            if not isinstance(entry, ExternalHandler):
                continue
            invoice, handler = self._external_source(entry)
            try:
                deps = InvoiceResolver(invoice).closure(handler)
            except DependencyError as e:
                raise type(e)(f"解析外部引用 {entry.external_ref} 的依赖失败: {e}") from e
            logger.debug("外部引用 %s: %d 个依赖 parcel", entry.external_ref, len(deps))

            group = group_name(entry)
            for dep in deps:
                label = copy.deepcopy(dep.label)
                label.annotations = {**(label.annotations or {}), DO_NOT_STAGE_ANNOTATION: "true"}
                parcels.append(Parcel(label=label, conditions=_conditions(member_of=group)))
        return parcels

    # ------------------------------------------------------------------
    # 文件 parcel
    # ------------------------------------------------------------------

    def _glob(self, pattern: str) -> list[Path]:
        base = self.context.relative_to
        matches = sorted(glob.glob(pattern, root_dir=base, recursive=True))
        paths = [base / m for m in matches if (base / m).is_file()]
        if not paths:
            logger.debug("glob 未匹配任何文件: %s", pattern)
        return paths

    def _file_parcel_tasks(self, entries: list[Entry]) -> list[Callable[[], Parcel]]:
        tasks: list[Callable[[], Parcel]] = []
        for entry in entries:
            group = group_name(entry)
            for pattern in entry.files or ():
                for path in self._glob(pattern):
                    tasks.append(partial(
                        self._local_parcel, path, entry,
                        feature=wagi_feature(is_asset_file=True), member_of=group,
                    ))
        return tasks

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    def _run_all(self, tasks: list[Callable[[], Parcel]]) -> list[Parcel]:
        """执行 parcel 构造任务，结果与输入顺序一致，按顺序抛出第一个错误"""
        if self.context.max_workers <= 1 or len(tasks) <= 1:
            return [task() for task in tasks]
        with ThreadPoolExecutor(max_workers=self.context.max_workers) as executor:
            futures = [executor.submit(task) for task in tasks]
            return [future.result() for future in futures]


def expand(
    manifest: Manifest,
    external_invoices: Mapping[PackageId, Invoice],
    versioning: InvoiceVersioning,
    relative_to: str | Path,
    *,
    build_values: Mapping[str, str] | None = None,
    max_workers: int = 1,
) -> Invoice:
    """展开清单为 invoice"""
    context = ExpansionContext(
        relative_to=Path(relative_to),
        versioning=versioning,
        external_invoices=external_invoices,
        build_values=build_values or {},
        max_workers=max_workers,
    )
    return Expander(context).expand(manifest)

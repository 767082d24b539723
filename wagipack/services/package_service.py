"""打包服务 — CLI 共享的打包流程

将「定位清单 → 解析 → 预取外部 invoice → 展开 → 暂存」的编排
从各个命令中提取出来，命令只负责参数解析和输出。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from wagipack.core.config import Config, get_config
from wagipack.core.dep.fetcher import (
    HttpInvoiceSource,
    StandaloneInvoiceSource,
    prefetch_invoices,
)
from wagipack.core.exceptions import ConfigError
from wagipack.core.expander import InvoiceVersioning, expand
from wagipack.core.invoice import Invoice
from wagipack.core.manifest import Manifest, find_manifest, load_manifest
from wagipack.core.protocols import InvoiceSource
from wagipack.core.writer import StagingWriter

logger = logging.getLogger(__name__)


@dataclass
class PackageRequest:
    """打包请求 DTO"""

    source: str = "."
    versioning: InvoiceVersioning = InvoiceVersioning.DEV
    values: dict[str, str] = field(default_factory=dict)
    server_url: str = ""
    import_dir: str = ""


@dataclass
class PackageResult:
    invoice: Invoice
    manifest_path: Path
    staged_dir: Path | None = None


# 按请求构造 invoice 来源的策略，测试时可替换
SourceFactory = Callable[[PackageRequest, Config], "InvoiceSource | None"]


def default_source_factory(req: PackageRequest, cfg: Config) -> InvoiceSource | None:
    """--import-dir 优先，其次包仓库地址；都没有时返回 None"""
    if req.import_dir:
        return StandaloneInvoiceSource(req.import_dir)
    server = req.server_url or cfg.server_url
    if server:
        return HttpInvoiceSource(server, timeout=cfg.fetch_timeout)
    return None


class PackageService:
    """清单打包服务"""

    def __init__(
        self,
        config: Config | None = None,
        source_factory: SourceFactory | None = None,
    ) -> None:
        self.config = config or get_config()
        self._source_factory = source_factory or default_source_factory

    def load(self, source: str) -> tuple[Manifest, Path]:
        """定位并解析清单"""
        path = find_manifest(source, self.config.manifest_names)
        return load_manifest(path), path

    def build(self, req: PackageRequest) -> PackageResult:
        """展开清单为 invoice，不写任何文件"""
        manifest, path = self.load(req.source)

        missing = sorted(manifest.referenced_variable_names() - set(req.values))
        if missing:
            logger.warning("构建条件引用了未提供的变量 (按缺失处理): %s", ", ".join(missing))

        refs = manifest.external_refs(req.values)
        external = {}
        if refs:
            invoice_source = self._source_factory(req, self.config)
            if invoice_source is None:
                raise ConfigError(
                    "清单包含外部引用，但未设置包仓库地址 "
                    "(--server / $BINDLE_URL) 或 --import-dir"
                )
            external = prefetch_invoices(
                refs, invoice_source, max_workers=self.config.max_workers,
            )

        invoice = expand(
            manifest, external, req.versioning, path.parent,
            build_values=req.values, max_workers=self.config.max_workers,
        )
        return PackageResult(invoice=invoice, manifest_path=path)

    def prepare(self, req: PackageRequest, staging_dir: str) -> PackageResult:
        """展开并写到暂存目录"""
        result = self.build(req)
        writer = StagingWriter(result.manifest_path.parent, staging_dir)
        result.staged_dir = writer.write(result.invoice)
        return result

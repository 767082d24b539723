"""领域协议定义

展开引擎只依赖这些抽象，具体的网络/磁盘实现可在测试中替换。
"""

from __future__ import annotations

from typing import Protocol

from wagipack.core.invoice import Invoice, PackageId


class InvoiceSource(Protocol):
    """外部 invoice 的来源"""

    def fetch(self, package_id: PackageId) -> Invoice:
        """拉取指定包的 invoice，失败时抛出 FetchError"""
        ...

"""外部包依赖

- closure.py: 在已拉取的 invoice 内查找 handler、计算传递依赖
- fetcher.py: 展开前预取外部 invoice（HTTP / 本地暂存目录）
"""

from wagipack.core.dep.closure import InvoiceResolver, closure, find_handler_parcel
from wagipack.core.dep.fetcher import (
    HttpInvoiceSource,
    StandaloneInvoiceSource,
    prefetch_invoices,
)

__all__ = [
    "InvoiceResolver",
    "closure",
    "find_handler_parcel",
    "HttpInvoiceSource",
    "StandaloneInvoiceSource",
    "prefetch_invoices",
]

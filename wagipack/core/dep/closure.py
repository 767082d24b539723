"""外部包依赖闭包

外部引用的 handler 在其所属包中通常还依赖别的 parcel：handler parcel
声明 requires 某些 group，这些 group 的成员又可能 requires 其他 group。
InvoiceResolver 沿 "requires -> 成员" 的边遍历，得到 handler 传递依赖的
全部 parcel。

遍历维护全局的已访问 group 集合，group 之间存在环 (A requires B,
B requires A) 时也能终止。
"""

from __future__ import annotations

import logging
from collections import deque

from wagipack.core.exceptions import (
    ExternalDependencyNotFoundError,
    ExternalHandlerNotFoundError,
)
from wagipack.core.invoice import Invoice, Parcel

logger = logging.getLogger(__name__)


def find_handler_parcel(invoice: Invoice, handler_id: str) -> Parcel | None:
    """按 wagi_handler_id 注解查找 handler parcel"""
    return next((p for p in invoice.parcels if p.handler_id == handler_id), None)


def parcels_in(invoice: Invoice, group: str) -> list[Parcel]:
    return invoice.parcels_in(group)


class InvoiceResolver:
    """在单个已拉取的 invoice 内做 handler 查找与依赖闭包"""

    def __init__(self, invoice: Invoice) -> None:
        self.invoice = invoice

    def handler(self, handler_id: str) -> Parcel:
        """查找 handler parcel，不存在则报错"""
        parcel = find_handler_parcel(self.invoice, handler_id)
        if parcel is None:
            available = sorted(
                p.handler_id for p in self.invoice.parcels if p.handler_id
            )
            raise ExternalHandlerNotFoundError(
                f"包 {self.invoice.package_id} 中没有 handler '{handler_id}'。"
                f"可用: {available}"
            )
        return parcel

    def closure(self, starting: Parcel) -> list[Parcel]:
        """起始 parcel 传递依赖的全部 parcel，按 sha256 去重并保持发现顺序"""
        handler_id = starting.handler_id
        if handler_id is None or find_handler_parcel(self.invoice, handler_id) is None:
            raise ExternalDependencyNotFoundError(
                f"parcel {starting.label.name} 不是包 {self.invoice.package_id} 中的 handler，"
                "无法计算依赖"
            )

        frontier = deque(starting.requires_groups())
        visited: set[str] = set(frontier)
        found: list[Parcel] = []

        while frontier:
            group = frontier.popleft()
            members = self.invoice.parcels_in(group)
            logger.debug("依赖 group %s: %d 个成员", group, len(members))
            found.extend(members)
            for member in members:
                for required in member.requires_groups():
                    if required not in visited:
                        visited.add(required)
                        frontier.append(required)

        unique: dict[str, Parcel] = {}
        for parcel in found:
            unique.setdefault(parcel.label.sha256, parcel)
        return list(unique.values())


def closure(invoice: Invoice, starting: Parcel) -> list[Parcel]:
    """InvoiceResolver(invoice).closure(starting) 的简写"""
    return InvoiceResolver(invoice).closure(starting)

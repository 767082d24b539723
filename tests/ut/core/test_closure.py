"""外部包依赖闭包测试"""

from __future__ import annotations

import pytest

from wagipack.core.dep.closure import InvoiceResolver, closure, find_handler_parcel, parcels_in
from wagipack.core.exceptions import (
    ExternalDependencyNotFoundError,
    ExternalHandlerNotFoundError,
)
from wagipack.core.invoice import Invoice, PackageId


class TestFindHandler:
    def test_found(self, shared_invoice) -> None:
        parcel = find_handler_parcel(shared_invoice, "static")
        assert parcel is not None
        assert parcel.label.name == "static.wasm"

    def test_missing_returns_none(self, shared_invoice) -> None:
        assert find_handler_parcel(shared_invoice, "nope") is None

    def test_parcels_in(self, shared_invoice) -> None:
        assert [p.label.name for p in parcels_in(shared_invoice, "g2")] == ["b.js"]
        assert parcels_in(shared_invoice, "nope") == []

    def test_resolver_missing_lists_available(self, shared_invoice) -> None:
        with pytest.raises(ExternalHandlerNotFoundError, match="lonely"):
            InvoiceResolver(shared_invoice).handler("nope")


class TestClosure:
    def test_cycle_terminates(self, shared_invoice) -> None:
        handler = find_handler_parcel(shared_invoice, "static")
        names = [p.label.name for p in closure(shared_invoice, handler)]
        assert names == ["a.js", "b.js"]

    def test_handler_without_requires(self, shared_invoice) -> None:
        handler = find_handler_parcel(shared_invoice, "lonely")
        assert closure(shared_invoice, handler) == []

    def test_dedup_by_sha256(self, make_parcel) -> None:
        invoice = Invoice(
            package_id=PackageId("dup", "1"),
            parcels=[
                make_parcel("h.wasm", handler_id="h", requires=["g1", "g2"]),
                make_parcel("one.txt", sha="same", member_of=["g1"]),
                make_parcel("two.txt", sha="same", member_of=["g2"]),
                make_parcel("other.txt", member_of=["g2"]),
            ],
        )
        deps = closure(invoice, find_handler_parcel(invoice, "h"))
        assert [p.label.name for p in deps] == ["one.txt", "other.txt"]

    def test_transitive_diamond_visited_once(self, make_parcel) -> None:
        invoice = Invoice(
            package_id=PackageId("diamond", "1"),
            parcels=[
                make_parcel("h.wasm", handler_id="h", requires=["left", "right"]),
                make_parcel("l.js", member_of=["left"], requires=["base"]),
                make_parcel("r.js", member_of=["right"], requires=["base"]),
                make_parcel("base.js", member_of=["base"]),
            ],
        )
        deps = closure(invoice, find_handler_parcel(invoice, "h"))
        assert [p.label.name for p in deps] == ["l.js", "r.js", "base.js"]

    def test_start_not_a_handler(self, shared_invoice) -> None:
        not_handler = shared_invoice.parcel_named("a.js")
        with pytest.raises(ExternalDependencyNotFoundError, match="a.js"):
            closure(shared_invoice, not_handler)

    def test_start_from_other_invoice(self, shared_invoice, make_parcel) -> None:
        foreign = make_parcel("x.wasm", handler_id="elsewhere", requires=["g1"])
        with pytest.raises(ExternalDependencyNotFoundError):
            closure(shared_invoice, foreign)

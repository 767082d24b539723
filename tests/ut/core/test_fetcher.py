"""外部 invoice 拉取测试"""

from __future__ import annotations

import io
import json
import threading
import urllib.error

import pytest

from wagipack.core.dep import fetcher
from wagipack.core.dep.fetcher import (
    HttpInvoiceSource,
    StandaloneInvoiceSource,
    prefetch_invoices,
)
from wagipack.core.exceptions import FetchError, ValidationError
from wagipack.core.invoice import Invoice, PackageId
from wagipack.core.manifest import ExternalRef
from wagipack.core.writer import StagingWriter, invoice_path

SHARED = PackageId("shared", "1.0.0")


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class TestHttpInvoiceSource:
    def test_fetch(self, monkeypatch, shared_invoice) -> None:
        seen = {}

        def fake_urlopen(req, timeout):
            seen["url"] = req.full_url
            seen["accept"] = req.get_header("Accept")
            seen["timeout"] = timeout
            return _FakeResponse(json.dumps(shared_invoice.to_dict()).encode("utf-8"))

        monkeypatch.setattr(fetcher.urllib.request, "urlopen", fake_urlopen)
        got = HttpInvoiceSource("http://bindle.local/v1/", timeout=5).fetch(SHARED)

        assert got == shared_invoice
        assert seen == {
            "url": "http://bindle.local/v1/_i/shared/1.0.0",
            "accept": "application/json",
            "timeout": 5,
        }

    def test_http_error(self, monkeypatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr(fetcher.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(FetchError, match="shared/1.0.0.*404"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_network_error(self, monkeypatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(fetcher.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(FetchError, match="网络错误"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_bad_json(self, monkeypatch) -> None:
        monkeypatch.setattr(
            fetcher.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(b"<html>"),
        )
        with pytest.raises(FetchError, match="响应格式错误"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_wrong_package_returned(self, monkeypatch, shared_invoice) -> None:
        other = Invoice(package_id=PackageId("other", "9"))
        monkeypatch.setattr(
            fetcher.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(json.dumps(other.to_dict()).encode()),
        )
        with pytest.raises(FetchError, match="other/9"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_non_utf8_body(self, monkeypatch) -> None:
        monkeypatch.setattr(
            fetcher.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(b"\xff\xfe\x00garbage"),
        )
        with pytest.raises(FetchError, match="响应格式错误"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_malformed_invoice_shape(self, monkeypatch) -> None:
        body = {"package_id": "shared/1.0.0", "parcel": [
            {"label": {"name": "x.js", "sha256": "s"}, "conditions": {"memberOf": "gx"}},
        ]}
        monkeypatch.setattr(
            fetcher.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(json.dumps(body).encode()),
        )
        with pytest.raises(FetchError, match="memberOf"):
            HttpInvoiceSource("https://bindle.local").fetch(SHARED)

    def test_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            HttpInvoiceSource("file:///etc")


class TestStandaloneInvoiceSource:
    def test_reads_staged_invoice(self, tmp_path) -> None:
        StagingWriter(tmp_path, tmp_path / "staging").write(
            Invoice(package_id=SHARED, parcels=[], groups=[]),
        )
        got = StandaloneInvoiceSource(tmp_path / "staging").fetch(SHARED)
        assert got.package_id == SHARED

    def test_corrupt_yaml(self, tmp_path) -> None:
        path = invoice_path(tmp_path, SHARED)
        path.parent.mkdir(parents=True)
        path.write_text("package_id: [unclosed\n", encoding="utf-8")
        with pytest.raises(FetchError, match="shared/1.0.0"):
            StandaloneInvoiceSource(tmp_path).fetch(SHARED)

    def test_missing(self, tmp_path) -> None:
        with pytest.raises(FetchError, match="shared/1.0.0"):
            StandaloneInvoiceSource(tmp_path).fetch(SHARED)


class _CountingSource:
    def __init__(self, invoices: dict[PackageId, Invoice]) -> None:
        self.invoices = invoices
        self.calls: list[PackageId] = []
        self._lock = threading.Lock()

    def fetch(self, package_id: PackageId) -> Invoice:
        with self._lock:
            self.calls.append(package_id)
        if package_id not in self.invoices:
            raise FetchError(f"没有 {package_id}")
        return self.invoices[package_id]


class TestPrefetch:
    def test_each_package_fetched_once(self, shared_invoice) -> None:
        source = _CountingSource({SHARED: shared_invoice})
        refs = [ExternalRef(SHARED, "static"), ExternalRef(SHARED, "lonely")]
        got = prefetch_invoices(refs, source)
        assert got == {SHARED: shared_invoice}
        assert source.calls == [SHARED]

    def test_no_refs(self) -> None:
        source = _CountingSource({})
        assert prefetch_invoices([], source) == {}
        assert source.calls == []

    def test_concurrent(self) -> None:
        ids = [PackageId(f"p{i}", "1") for i in range(6)]
        source = _CountingSource({pid: Invoice(package_id=pid) for pid in ids})
        refs = [ExternalRef(pid, "h") for pid in ids]
        got = prefetch_invoices(refs, source, max_workers=3)
        assert list(got) == ids
        assert sorted(source.calls) == sorted(ids)

    def test_failure_aborts(self) -> None:
        source = _CountingSource({})
        with pytest.raises(FetchError, match="missing/1"):
            prefetch_invoices([ExternalRef(PackageId("missing", "1"), "h")], source)

"""外部 invoice 拉取

展开开始前，一次性拉取清单中所有外部引用的包，得到
{PackageId: Invoice} 表交给展开引擎；引擎本身不做任何网络访问。

来源:
- HttpInvoiceSource: 包仓库服务 GET <server>/_i/<name>/<version>
- StandaloneInvoiceSource: 本地暂存目录（由 StagingWriter 写出）
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from wagipack.core.exceptions import FetchError, ValidationError
from wagipack.core.invoice import Invoice, PackageId
from wagipack.utils.net import join_url, validate_url_scheme
from wagipack.utils.yaml_io import load_yaml

if TYPE_CHECKING:
    from wagipack.core.manifest import ExternalRef
    from wagipack.core.protocols import InvoiceSource

logger = logging.getLogger(__name__)


class HttpInvoiceSource:
    """从包仓库服务拉取 invoice (JSON)"""

    def __init__(self, server_url: str, timeout: int = 30) -> None:
        validate_url_scheme(server_url, context="invoice server")
        self.server_url = server_url
        self.timeout = timeout

    def fetch(self, package_id: PackageId) -> Invoice:
        url = join_url(self.server_url, "_i", str(package_id))
        logger.info("拉取 invoice: %s", url)
        req = urllib.request.Request(
            url, method="GET", headers={"Accept": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise FetchError(
                f"拉取 {package_id} 失败: HTTP 错误 {e.code}: {e.reason}"
            ) from e
        except urllib.error.URLError as e:
            raise FetchError(f"拉取 {package_id} 失败: 网络错误: {e.reason}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FetchError(f"拉取 {package_id} 失败: 响应格式错误: {e}") from e
        except OSError as e:
            raise FetchError(f"拉取 {package_id} 失败: {e}") from e
        return _to_invoice(data, package_id)


class StandaloneInvoiceSource:
    """从本地暂存目录读取已准备好的包"""

    def __init__(self, staging_dir: str | Path) -> None:
        self.staging_dir = Path(staging_dir)

    def fetch(self, package_id: PackageId) -> Invoice:
        from wagipack.core.writer import invoice_path

        path = invoice_path(self.staging_dir, package_id)
        if not path.is_file():
            raise FetchError(f"本地暂存目录中没有包 {package_id}: {path}")
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise FetchError(f"读取 {package_id} 失败: {path}: {e}") from e
        logger.info("本地命中: %s -> %s", package_id, path)
        return _to_invoice(data, package_id)


def _to_invoice(data: Any, package_id: PackageId) -> Invoice:
    try:
        invoice = Invoice.from_dict(data)
    except ValidationError as e:
        raise FetchError(f"包 {package_id} 的 invoice 无效: {e}") from e
    if invoice.package_id != package_id:
        raise FetchError(
            f"请求的是 {package_id}，返回的 invoice 却是 {invoice.package_id}"
        )
    return invoice


def prefetch_invoices(
    refs: list[ExternalRef],
    source: InvoiceSource,
    max_workers: int = 1,
) -> dict[PackageId, Invoice]:
    """拉取外部引用涉及的全部包，每个包只拉一次

    任何一个包拉取失败都会中止（按引用顺序抛出第一个错误）。
    """
    ids = list(dict.fromkeys(ref.package_id for ref in refs))
    if not ids:
        return {}

    logger.info("预取 %d 个外部包", len(ids))
    if max_workers <= 1 or len(ids) == 1:
        return {pid: source.fetch(pid) for pid in ids}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(source.fetch, pid) for pid in ids]
        return {pid: future.result() for pid, future in zip(ids, futures)}

"""暂存目录写出

把展开得到的 invoice 连同需要上传的 parcel 内容写到本地目录:

    <dest>/<sha256(package_id)>/invoice.yml
    <dest>/<sha256(package_id)>/parcels/<sha256>.dat

带 do_not_stage 注解的 parcel 来自外部包，只引用不复制。
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

from wagipack.core.exceptions import FilesystemError
from wagipack.core.invoice import DO_NOT_STAGE_ANNOTATION, Invoice, PackageId
from wagipack.utils.yaml_io import save_yaml

logger = logging.getLogger(__name__)

INVOICE_FILE = "invoice.yml"
PARCELS_DIR = "parcels"


def package_dir(dest: Path, package_id: PackageId) -> Path:
    digest = hashlib.sha256(str(package_id).encode("utf-8")).hexdigest()
    return dest / digest


def invoice_path(dest: Path, package_id: PackageId) -> Path:
    return package_dir(dest, package_id) / INVOICE_FILE


class StagingWriter:
    """将 invoice 和 parcel 写到暂存目录"""

    def __init__(self, source_dir: str | Path, dest_dir: str | Path) -> None:
        self.source_dir = Path(source_dir)
        self.dest_dir = Path(dest_dir)

    def write(self, invoice: Invoice) -> Path:
        """写出 invoice，返回包目录"""
        pkg_dir = package_dir(self.dest_dir, invoice.package_id)
        parcels_dir = pkg_dir / PARCELS_DIR
        parcels_dir.mkdir(parents=True, exist_ok=True)

        staged = 0
        for parcel in invoice.parcels:
            if parcel.label.has_annotation(DO_NOT_STAGE_ANNOTATION):
                continue
            target = parcels_dir / f"{parcel.label.sha256}.dat"
            if target.exists():
                continue
            source = self.source_dir / parcel.label.name
            try:
                shutil.copyfile(source, target)
            except OSError as e:
                raise FilesystemError(
                    f"暂存 parcel {parcel.label.name} 失败: {source} -> {target}: {e}"
                ) from e
            staged += 1

        try:
            save_yaml(pkg_dir / INVOICE_FILE, invoice.to_dict())
        except OSError as e:
            raise FilesystemError(f"写出 invoice 失败: {pkg_dir}: {e}") from e
        logger.info(
            "已暂存 %s: %d 个 parcel -> %s", invoice.package_id, staged, pkg_dir,
        )
        return pkg_dir

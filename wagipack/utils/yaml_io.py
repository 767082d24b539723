"""YAML 文件统一读写工具

清单、配置和暂存目录中的 invoice 都经由这里读写：
统一 encoding="utf-8"、空值保护、原子写入。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 清单和 invoice 都是小文件，超过此大小视为误用
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """先写同目录临时文件再 rename，中途失败不会留下半截文件"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def read_text(path: str | Path) -> str:
    """读取 YAML 源文本，带大小检查"""
    p = Path(path)
    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({size} 字节), 超过限制 {MAX_YAML_SIZE} 字节"
        )
    return p.read_text(encoding="utf-8")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    文件不存在、为空或顶层不是映射时返回空字典。
    YAML 语法错误和 IO 错误向上抛出。
    """
    p = Path(path)
    if not p.exists():
        return {}
    try:
        result = yaml.safe_load(read_text(p))
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
        raise
    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，返回空字典",
            p, type(result).__name__,
        )
        return {}
    return result


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本，保持键顺序"""
    return yaml.safe_dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False,
    )


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件，自动创建父目录"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except yaml.YAMLError as e:
        logger.error("序列化 YAML 数据失败: %s, 错误: %s", p, e)
        raise
    except OSError as e:
        logger.error("写入文件失败: %s, 错误: %s", p, e)
        raise

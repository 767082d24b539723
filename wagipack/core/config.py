"""集中配置管理

CLI 选项的默认值都从这里取，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import yaml

from wagipack.core.exceptions import ConfigError
from wagipack.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".wagipack.yml"


@dataclass
class Config:
    """全局配置"""

    # 在目录中查找清单时依次尝试的文件名
    manifest_names: list[str] = field(
        default_factory=lambda: ["wagipack.yml", "wagipack.yaml"],
    )
    staging_dir: str = ".wagipack/staging"

    # 外部 invoice 来源
    server_url: str = ""
    fetch_timeout: int = 30

    # 展开
    versioning: str = "dev"
    max_workers: int = 4

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not isinstance(cfg.manifest_names, list) or not cfg.manifest_names:
            raise ConfigError(f"配置项 manifest_names 必须是非空列表: {path}")
        if not isinstance(cfg.max_workers, int) or cfg.max_workers < 1:
            raise ConfigError(f"配置项 max_workers 必须 >= 1: {path}")
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return _current

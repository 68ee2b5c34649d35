"""
配置管理模块

从 YAML 文件加载代理定义，使用 Pydantic 校验并填充默认值。

配置文件示例:
    proxies:
      - name: postgres
        local_port: 15432
        remote_host: db.internal
        remote_port: 5432
        enabled: true
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from tcp_proxy_manager.dialer import DEFAULT_CONNECT_TIMEOUT, DEFAULT_MAX_ATTEMPTS, DialPolicy
from tcp_proxy_manager.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "/config/proxies.yml"
WILDCARD_HOST = "0.0.0.0"


class ProxyDefinition(BaseModel):
    """单条转发规则"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="代理名称（唯一）")
    local_host: str = Field(default=WILDCARD_HOST, description="本地监听地址，留空为 0.0.0.0")
    local_port: int = Field(..., ge=0, le=65535, description="本地监听端口，0 表示由系统分配")
    remote_host: str = Field(..., min_length=1, description="远端地址")
    remote_port: int = Field(..., ge=1, le=65535, description="远端端口")
    enabled: bool = Field(default=False, description="是否启用")

    @field_validator("local_host", mode="before")
    @classmethod
    def _default_local_host(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return WILDCARD_HOST
        return value

    @property
    def local_address(self) -> str:
        return f"{self.local_host}:{self.local_port}"

    @property
    def remote_address(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 50
    backup_count: int = 5


class DialConfig(BaseModel):
    """远端连接重试配置"""
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)
    backoff_unit: float = Field(default=1.0, ge=0)

    def to_policy(self) -> DialPolicy:
        return DialPolicy(
            max_attempts=self.max_attempts,
            connect_timeout=self.connect_timeout,
            backoff_unit=self.backoff_unit,
        )


class AppConfig(BaseModel):
    """应用配置（完整配置）"""
    proxies: List[ProxyDefinition] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    dial: DialConfig = Field(default_factory=DialConfig)

    @model_validator(mode="after")
    def _unique_names(self):
        seen = set()
        for proxy in self.proxies:
            if proxy.name in seen:
                raise ValueError(f"duplicate proxy name: {proxy.name}")
            seen.add(proxy.name)
        return self

    @property
    def enabled_proxies(self) -> List[ProxyDefinition]:
        return [p for p in self.proxies if p.enabled]


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 CONFIG_PATH
    3. 默认路径 /config/proxies.yml

    Raises:
        ConfigurationError: 文件不存在、YAML 语法错误或校验失败
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"配置文件不存在: {config_path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"无法读取配置文件 {config_path}", cause=e) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"配置文件解析失败 {config_path}", cause=e) from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"配置文件格式错误 {config_path}: 顶层必须是映射")

    try:
        return AppConfig(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"配置校验失败 {config_path}", cause=e) from e

"""Configuration-driven multi-endpoint TCP forwarder."""

from tcp_proxy_manager.config import AppConfig, ProxyDefinition, load_config
from tcp_proxy_manager.manager import ProxyManager, ProxyRegistry

__version__ = "1.0.0"

__all__ = ["AppConfig", "ProxyDefinition", "load_config", "ProxyManager", "ProxyRegistry"]

"""
TCP Proxy Manager 主程序入口

使用方式:
    python -m tcp_proxy_manager [config_path]
    或
    CONFIG_PATH=/config/proxies.yml tcp-proxy-manager
"""

import logging
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

from tcp_proxy_manager.config import LoggingConfig, load_config
from tcp_proxy_manager.errors import ConfigurationError, ProxyManagerError
from tcp_proxy_manager.manager import ProxyManager

logger = logging.getLogger("tcp_proxy_manager")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: LoggingConfig):
    """配置日志"""
    level = getattr(logging, config.level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # 如果配置了文件日志
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)


def install_signal_handlers(stop: threading.Event):
    """SIGINT/SIGTERM 触发关闭"""
    def _handler(signum, _frame):
        logger.info(f"Received signal {signal.Signals(signum).name}")
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main():
    """主程序入口"""
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.logging)

    manager = ProxyManager(config.proxies, dial_policy=config.dial.to_policy())
    stop = threading.Event()
    install_signal_handlers(stop)

    try:
        manager.start()
    except (ProxyManagerError, RuntimeError) as e:
        logger.error(f"Failed to start proxies: {e}")
        manager.shutdown()
        sys.exit(1)

    logger.info("TCP Proxy Manager started successfully")
    logger.info("Active proxies:")
    for proxy in config.enabled_proxies:
        logger.info(f"  {proxy.name}: {proxy.local_address} -> {proxy.remote_address}")

    # 主线程定期醒来以便及时处理信号
    while not stop.wait(0.5):
        pass

    logger.info("Shutting down...")
    manager.shutdown()


if __name__ == "__main__":
    main()

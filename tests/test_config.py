"""
测试配置加载

覆盖：
- YAML 解析与默认值填充
- 重复名称、非法端口、缺失文件、语法错误
- CONFIG_PATH 环境变量
"""

import pytest

from tcp_proxy_manager.config import AppConfig, ProxyDefinition, load_config
from tcp_proxy_manager.errors import ConfigurationError


CONFIG_YAML = """
proxies:
  - name: web
    local_port: 8080
    remote_host: 10.0.0.5
    remote_port: 80
    enabled: true
  - name: db
    local_host: 127.0.0.1
    local_port: 15432
    remote_host: db.internal
    remote_port: 5432
logging:
  level: DEBUG
dial:
  max_attempts: 5
"""


def _write(tmp_path, text):
    path = tmp_path / "proxies.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_fills_defaults(tmp_path):
    config = load_config(str(_write(tmp_path, CONFIG_YAML)))

    assert [p.name for p in config.proxies] == ["web", "db"]
    web, db = config.proxies
    assert web.local_host == "0.0.0.0"
    assert web.enabled is True
    assert db.local_host == "127.0.0.1"
    assert db.enabled is False
    assert config.enabled_proxies == [web]
    assert config.logging.level == "DEBUG"

    policy = config.dial.to_policy()
    assert policy.max_attempts == 5
    assert policy.connect_timeout == 10.0


def test_empty_local_host_becomes_wildcard():
    definition = ProxyDefinition(name="a", local_host="", local_port=1, remote_host="h", remote_port=2)
    assert definition.local_host == "0.0.0.0"
    assert definition.local_address == "0.0.0.0:1"
    assert definition.remote_address == "h:2"


def test_definition_is_immutable():
    definition = ProxyDefinition(name="a", local_port=1, remote_host="h", remote_port=2)
    with pytest.raises(Exception):
        definition.local_port = 5


def test_duplicate_names_rejected(tmp_path):
    text = """
proxies:
  - {name: dup, local_port: 1, remote_host: a, remote_port: 1}
  - {name: dup, local_port: 2, remote_host: b, remote_port: 2}
"""
    with pytest.raises(ConfigurationError) as exc_info:
        load_config(str(_write(tmp_path, text)))
    assert "duplicate proxy name" in str(exc_info.value)


def test_invalid_port_rejected(tmp_path):
    text = """
proxies:
  - {name: bad, local_port: 70000, remote_host: a, remote_port: 1}
"""
    with pytest.raises(ConfigurationError):
        load_config(str(_write(tmp_path, text)))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.yml"))


def test_yaml_syntax_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(_write(tmp_path, "proxies: [unclosed")))


def test_empty_file_yields_no_proxies(tmp_path):
    config = load_config(str(_write(tmp_path, "")))
    assert config == AppConfig()
    assert config.proxies == []


def test_config_path_from_env(tmp_path, monkeypatch):
    path = _write(tmp_path, CONFIG_YAML)
    monkeypatch.setenv("CONFIG_PATH", str(path))

    config = load_config()
    assert len(config.proxies) == 2

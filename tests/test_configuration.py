import json
import logging

import pytest

from ntp_query.configuration import (
    ConfigurationError,
    MetricsConfig,
    NtpClientConfig,
    build_config,
    initialize_config,
    load_config,
    merge_dicts_recursive,
    setup_logging,
)

from conftest import TEST_CONFIG_FILE


def test_initialize_config_from_file():
    configs = initialize_config(TEST_CONFIG_FILE, env_file=None)

    assert configs["NtpClient"] == NtpClientConfig(
        server="ntp.test.local", port=10123, timeout=2.5
    )
    assert configs["Metrics"] == MetricsConfig(
        enable_prometheus_server=False, prometheus_port=9123
    )


def test_initialize_config_defaults():
    config = initialize_config(env_file=None)["NtpClient"]

    assert config.server == "pool.ntp.org"
    assert config.port == 123
    assert config.timeout == 5.0


def test_client_config_unpacks_as_mapping():
    config = NtpClientConfig(server="time.example.org")

    assert dict(config) == {"server": "time.example.org", "port": 123, "timeout": 5.0}
    with pytest.raises(KeyError):
        config["hostname"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"server": ""},
        {"server": "time.example.org", "port": 0},
        {"server": "time.example.org", "port": 70000},
        {"server": "time.example.org", "timeout": 0},
        {"server": "time.example.org", "timeout": -1.0},
    ],
)
def test_client_config_validation(kwargs):
    with pytest.raises(ConfigurationError):
        NtpClientConfig(**kwargs)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("NTP_SERVER", "env.example.org")
    monkeypatch.setenv("NTP_TIMEOUT", "1.5")

    config = initialize_config(TEST_CONFIG_FILE, env_file=None)["NtpClient"]

    assert config.server == "env.example.org"
    assert config.port == 10123
    assert config.timeout == 1.5


def test_dotenv_overrides(tmp_path):
    env_file = tmp_path / "test.env"
    env_file.write_text("NTP_SERVER=dotenv.example.org\nNTP_PORT=1123\n")

    config = initialize_config(TEST_CONFIG_FILE, env_file=env_file)["NtpClient"]

    assert config.server == "dotenv.example.org"
    assert config.port == 1123


def test_invalid_environment_value(monkeypatch):
    monkeypatch.setenv("NTP_PORT", "ntp")
    with pytest.raises(ConfigurationError):
        initialize_config(TEST_CONFIG_FILE, env_file=None)


def test_load_config_formats(tmp_path):
    json_file = tmp_path / "config.json"
    json_file.write_text(json.dumps({"ntp": {"server": "json.example.org"}}))
    yaml_file = tmp_path / "config.yaml"
    yaml_file.write_text("ntp:\n  server: yaml.example.org\n  timeout: 3\n")

    assert load_config(json_file)["ntp"]["server"] == "json.example.org"
    assert load_config(str(yaml_file))["ntp"] == {
        "server": "yaml.example.org",
        "timeout": 3,
    }

    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.toml")

    ini_file = tmp_path / "config.ini"
    ini_file.write_text("[ntp]\n")
    with pytest.raises(ConfigurationError):
        load_config(ini_file)


def test_build_config_merges_over_defaults():
    config = build_config({"ntp": {"timeout": 1.0, "metrics": {"prometheus_port": 9000}}})

    assert config["ntp"]["server"] == "pool.ntp.org"
    assert config["ntp"]["timeout"] == 1.0
    assert config["ntp"]["metrics"] == {
        "enable_prometheus_server": False,
        "prometheus_port": 9000,
    }


def test_merge_dicts_recursive():
    merged = merge_dicts_recursive({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 10}})

    assert merged == {"a": {"b": 10, "c": 2}, "d": 3}


def test_setup_logging_from_dict():
    logger = setup_logging(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {"ntp_query": {"level": "DEBUG"}},
        }
    )

    assert logger.name == "ntp_query"
    assert logger.level == logging.DEBUG

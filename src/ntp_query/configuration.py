from __future__ import annotations
from dataclasses import asdict, dataclass
from logging.config import dictConfig
from pathlib import Path
from typing import Dict, Mapping, Optional, Union
import logging
import os

from dotenv import load_dotenv

from ntp_query.packet import NtpError
from ntp_query.transport import DEFAULT_TIMEOUT, NTP_PORT

FILEPATH_CONFIG_DEFAULT = "config/config.toml"
FILEPATH_LOGGING_CONFIG_DEFAULT = "config/logging.yaml"
FILEPATH_ENV_DEFAULT = ".env"
PORT_PROMETHEUS_DEFAULT = 8000

# Environment variables that take precedence over the config file
ENV_OVERRIDES = {
    "NTP_SERVER": ("server", str),
    "NTP_PORT": ("port", int),
    "NTP_TIMEOUT": ("timeout", float),
}


class ConfigurationError(NtpError):
    """Raised for invalid client configuration values."""


class UnpackMixin(Mapping):
    """A mixin class to unpack dataclass attributes as a mapping."""

    def __iter__(self):
        return iter(asdict(self).keys())

    def __len__(self):
        return len(asdict(self))

    def __getitem__(self, key):
        if key not in asdict(self):
            raise KeyError(f"Key {key} not found in {self.__class__.__name__}")
        return getattr(self, key)


@dataclass
class NtpClientConfig(UnpackMixin):
    """Configuration for querying an NTP server."""

    server: str
    port: int = NTP_PORT
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        if not self.server:
            raise ConfigurationError("NTP server hostname must not be empty")
        if not 0 < int(self.port) < 65536:
            raise ConfigurationError(f"Invalid NTP port: {self.port}")
        if float(self.timeout) <= 0:
            raise ConfigurationError(
                f"Timeout must be greater than 0, got {self.timeout}"
            )


@dataclass
class MetricsConfig:
    enable_prometheus_server: bool = False
    prometheus_port: int = PORT_PROMETHEUS_DEFAULT


def load_config(filepath: Union[str, Path]) -> dict:
    if isinstance(filepath, str):
        filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    if filepath.suffix == ".json":
        import json

        with open(filepath, "r") as file:
            return json.load(file)

    if filepath.suffix in (".yaml", ".yml"):
        import yaml

        with open(filepath, "r") as file:
            return yaml.safe_load(file)

    if filepath.suffix == ".toml":
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib

        with open(filepath, "rb") as file:
            return tomllib.load(file)

    raise ConfigurationError(f"Unsupported configuration file type: {filepath}")


def merge_dicts_recursive(dict1: dict, dict2: dict) -> dict:
    """
    Recursively merge two dictionaries. dict2 takes precedence over dict1.

    Args:
    - dict1: The first dictionary.
    - dict2: The second dictionary.

    Returns:
    - Merged dictionary.
    """
    merged_dict = dict1.copy()

    for key, value in dict2.items():
        if (
            key in merged_dict
            and isinstance(merged_dict[key], dict)
            and isinstance(value, dict)
        ):
            merged_dict[key] = merge_dicts_recursive(merged_dict[key], value)
        else:
            merged_dict[key] = value

    return merged_dict


def build_config(config: Union[str, Path, dict] = None) -> dict:
    from ntp_query.config_default import config_defaults

    if config is None:
        config_local = {}
    elif isinstance(config, dict):
        config_local = config
    else:
        config_local = load_config(config)
    # Local configuration takes precedence over the defaults
    return merge_dicts_recursive(config_defaults, config_local)


def apply_env_overrides(
    ntp_config: dict, env_file: Optional[Union[str, Path]] = None
) -> dict:
    """
    Override values of the ``ntp`` table from the environment.

    :param ntp_config: The ``ntp`` table of a built configuration.
    :param env_file: Optional dotenv file loaded before reading the environment.
        Variables already set in the environment are not overwritten.
    :return: A new dictionary with overrides applied.
    """
    if env_file is not None and Path(env_file).exists():
        load_dotenv(env_file)
    overridden = dict(ntp_config)
    for variable, (key, cast) in ENV_OVERRIDES.items():
        value = os.getenv(variable)
        if value is None or value == "":
            continue
        try:
            overridden[key] = cast(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {variable}: {value!r}"
            ) from e
    return overridden


def initialize_config(
    config: Union[str, Path, dict] = None,
    env_file: Optional[Union[str, Path]] = FILEPATH_ENV_DEFAULT,
) -> Dict[str, Union[NtpClientConfig, MetricsConfig]]:
    """
    Build the client and metrics configuration.

    Args:
        config: A configuration file path or dictionary. Defaults are used for
            anything it does not set.
        env_file: A dotenv file with NTP_* overrides. Ignored if it does not exist.

    Returns:
        A dictionary with "NtpClient" and "Metrics" entries.
    """
    config = build_config(config)
    ntp_config = apply_env_overrides(config["ntp"], env_file)
    metrics = ntp_config.get("metrics", {})

    client_config = NtpClientConfig(
        server=ntp_config["server"],
        port=int(ntp_config["port"]),
        timeout=float(ntp_config["timeout"]),
    )
    metrics_config = MetricsConfig(
        enable_prometheus_server=metrics.get("enable_prometheus_server", False),
        prometheus_port=metrics.get("prometheus_port", PORT_PROMETHEUS_DEFAULT),
    )
    return {"NtpClient": client_config, "Metrics": metrics_config}


def setup_logging(logging_config: Union[str, Path, dict] = None) -> logging.Logger:
    """
    Initialize logging from a dictConfig mapping or a YAML/JSON/TOML file.

    Args:
        logging_config: The logging configuration dictionary or file path.

    Returns:
        The package logger.
    """
    logging_config = logging_config or FILEPATH_LOGGING_CONFIG_DEFAULT
    if not isinstance(logging_config, dict):
        logging_config = load_config(logging_config)
        # File handlers in the shipped config write to logs/
        Path.mkdir(Path("logs"), exist_ok=True)
    dictConfig(logging_config)
    return logging.getLogger("ntp_query")


def start_prometheus_server(port: int = None) -> None:
    from prometheus_client import start_http_server

    start_http_server(port or PORT_PROMETHEUS_DEFAULT)

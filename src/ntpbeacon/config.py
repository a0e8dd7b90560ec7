"""Configuration loading for ntpbeacon."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "NTPBEACON_LOG_LEVEL"
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class NTPSettings:
    """NTP polling configuration"""
    server: str = "time.google.com"
    port: int = 123
    version: int = 4
    timeout_seconds: float = 2.0
    poll_interval_seconds: float = 10.0
    bind_address: str = "0.0.0.0"
    bind_port: int = 7777
    roundtrip_tolerance_micros: int = 1000  # Clock jitter allowance for negative roundtrips
    history_size: int = 100  # Samples kept for poller statistics

    def validate(self):
        if self.timeout_seconds <= 0:
            raise ValueError(f"ntp.timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"ntp.poll_interval_seconds must be > 0, got {self.poll_interval_seconds}")
        if self.version not in (3, 4):
            raise ValueError(f"ntp.version must be 3 or 4, got {self.version}")
        if self.roundtrip_tolerance_micros < 0:
            raise ValueError("ntp.roundtrip_tolerance_micros must be >= 0")
        if self.history_size < 1:
            raise ValueError("ntp.history_size must be >= 1")
        _check_port("ntp.port", self.port, allow_zero=False)
        _check_port("ntp.bind_port", self.bind_port)


@dataclass
class HTTPSettings:
    """HTTP listener configuration"""
    host: str = "127.0.0.1"
    port: int = 3030

    def validate(self):
        _check_port("http.port", self.port)


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT

    def validate(self):
        if not isinstance(logging.getLevelName(self.level.upper()), int):
            raise ValueError(f"Unknown logging level: {self.level}")


@dataclass
class BeaconConfig:
    ntp: NTPSettings = field(default_factory=NTPSettings)
    http: HTTPSettings = field(default_factory=HTTPSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> "BeaconConfig":
        try:
            self.ntp.validate()
            self.http.validate()
            self.logging.validate()
        except (TypeError, AttributeError) as e:
            # Values of the wrong type, e.g. a string where a number belongs
            raise ValueError(f"Invalid configuration value: {e}") from e
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BeaconConfig":
        data = data or {}
        config = cls(
            ntp=_build_section(NTPSettings, data.get('ntp'), 'ntp'),
            http=_build_section(HTTPSettings, data.get('http'), 'http'),
            logging=_build_section(LoggingSettings, data.get('logging'), 'logging'),
        )
        for key in data:
            if key not in ('ntp', 'http', 'logging'):
                logger.warning(f"Ignoring unknown config section '{key}'")

        env_level = os.environ.get(LOG_LEVEL_ENV)
        if env_level:
            config.logging.level = env_level

        return config.validate()


def _check_port(name: str, port: int, allow_zero: bool = True):
    low = 0 if allow_zero else 1
    if not low <= port <= 65535:
        raise ValueError(f"{name} must be in [{low}, 65535], got {port}")


def _build_section(section_cls, values: Optional[Dict[str, Any]], name: str):
    values = values or {}
    known = {f.name for f in fields(section_cls)}
    kwargs = {}
    for key, value in values.items():
        if key in known:
            kwargs[key] = value
        else:
            logger.warning(f"Ignoring unknown config key '{name}.{key}'")
    return section_cls(**kwargs)


def load_config(config_path: Optional[Union[str, Path]] = None) -> BeaconConfig:
    """Load configuration from a YAML file, or defaults when no path is given."""
    if config_path is None:
        return BeaconConfig.from_dict({})

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    logger.info(f"Loaded config from: {config_path}")
    return BeaconConfig.from_dict(data)

"""
Liveness Monitor Configuration Loader
Loads monitor.yaml and overlays credentials from the environment
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from tankwatch.core.error_handling import ConfigurationError
from tankwatch.models.device import Device

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "tankwatch/config/monitor.yaml"


@dataclass
class BrokerConfig:
    """MQTT broker configuration"""
    host: str = "api.yosmart.com"
    port: int = 8003
    home_id: str = ""
    client_id_prefix: str = "water-dashboard"
    qos: int = 1
    keepalive: int = 60
    reconnect_delay_seconds: float = 5.0
    connect_timeout_seconds: float = 30.0


@dataclass
class AuthConfig:
    """Token endpoint configuration"""
    token_url: str = "https://api.yosmart.com/open/yolink/token"
    client_id: str = ""
    client_secret: str = ""
    safety_margin_seconds: float = 300.0
    default_ttl_seconds: float = 7200.0
    request_timeout_seconds: float = 10.0
    refresh_interval_seconds: float = 90 * 60


@dataclass
class LivenessConfig:
    """Connectivity thresholds and check cadence"""
    stale_after_seconds: float = 30 * 60
    offline_after_seconds: float = 2 * 60 * 60
    sweep_interval_seconds: float = 10 * 60
    heartbeat_interval_seconds: float = 30 * 60
    low_battery_percent: float = 50
    critical_battery_percent: float = 25


@dataclass
class HistoryConfig:
    """Event log and timeline limits"""
    max_events: int = 500
    timeline_retention_days: float = 7


@dataclass
class StorageConfig:
    """Snapshot persistence"""
    backend: str = "json"  # json, sqlite
    data_dir: str = "public/data"
    sqlite_path: str = "data/tankwatch.db"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/tankwatch.log"
    json_format: bool = False
    console_output: bool = True


@dataclass
class MonitorConfig:
    """Complete liveness monitor configuration"""
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    devices: List[Device] = field(default_factory=list)

    @property
    def device_map(self) -> Dict[str, Device]:
        return {device.device_id: device for device in self.devices}

    def validate(self, require_credentials: bool = True) -> None:
        """
        Check thresholds, storage backend and credentials.

        Args:
            require_credentials: Also require client id/secret and home id

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        liveness = self.liveness
        if liveness.stale_after_seconds <= 0 or liveness.offline_after_seconds <= 0:
            raise ConfigurationError("Liveness thresholds must be positive")
        if liveness.stale_after_seconds >= liveness.offline_after_seconds:
            raise ConfigurationError(
                "liveness.stale_after_seconds must be shorter than offline_after_seconds",
                details={
                    'stale_after_seconds': liveness.stale_after_seconds,
                    'offline_after_seconds': liveness.offline_after_seconds,
                }
            )
        if liveness.sweep_interval_seconds <= 0:
            raise ConfigurationError("liveness.sweep_interval_seconds must be positive")

        if self.history.max_events < 1:
            raise ConfigurationError("history.max_events must be at least 1")
        if self.history.timeline_retention_days <= 0:
            raise ConfigurationError("history.timeline_retention_days must be positive")

        if self.storage.backend not in ("json", "sqlite"):
            raise ConfigurationError(
                f"Unknown storage backend '{self.storage.backend}'",
                details={'supported': ['json', 'sqlite']}
            )

        if require_credentials:
            missing = []
            if not self.auth.client_id:
                missing.append("YOLINK_UAC_ID")
            if not self.auth.client_secret:
                missing.append("YOLINK_UAC_SECRET")
            if not self.broker.home_id:
                missing.append("YOLINK_HOME_ID")
            if missing:
                raise ConfigurationError(
                    f"Missing credentials: {', '.join(missing)}",
                    details={'missing': missing}
                )


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return value


def _parse_devices(raw_devices: Any) -> List[Device]:
    """
    Accepts either a list of {id, name, capacity} or a mapping id -> {name, capacity}.
    """
    devices = []
    if isinstance(raw_devices, dict):
        items = [dict(v or {}, id=k) for k, v in raw_devices.items()]
    elif isinstance(raw_devices, list):
        items = raw_devices
    else:
        raise ConfigurationError("Config section 'devices' must be a list or mapping")

    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            raise ConfigurationError(f"Device entry without id: {item!r}")
        devices.append(Device(
            device_id=str(item["id"]),
            display_name=item.get("name") or str(item["id"]),
            capacity=item.get("capacity"),
        ))
    return devices


class MonitorConfigLoader:
    """
    Load monitor configuration from YAML file and environment

    Usage:
        config = MonitorConfigLoader.load()
        config.validate()

        print(config.broker.host)
        print(config.liveness.offline_after_seconds)
    """

    @staticmethod
    def load(
        config_path: Optional[str] = None,
        env_file: Optional[str] = ".env"
    ) -> MonitorConfig:
        """
        Load configuration from YAML file, then apply environment overrides.

        Args:
            config_path: Path to monitor.yaml (defaults to $TANKWATCH_CONFIG)
            env_file: dotenv file loaded without overriding real variables

        Returns:
            MonitorConfig object

        Raises:
            ConfigurationError: If the YAML cannot be parsed or has bad sections
        """
        if env_file and Path(env_file).exists():
            load_dotenv(env_file, override=False)

        config_path = config_path or os.getenv("TANKWATCH_CONFIG", DEFAULT_CONFIG_PATH)
        path = Path(config_path)

        config = MonitorConfig()

        if not path.exists():
            logger.warning(
                f"Monitor config file not found: {config_path}, "
                f"using default configuration"
            )
        else:
            try:
                with open(path, 'r') as f:
                    raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Invalid YAML in {config_path}: {e}",
                    details={'path': config_path}
                ) from e

            if not raw_config:
                logger.warning("Empty config file, using defaults")
            elif not isinstance(raw_config, dict):
                raise ConfigurationError(f"Config root in {config_path} must be a mapping")
            else:
                config = MonitorConfigLoader._parse(raw_config)
                logger.info(f"Monitor configuration loaded from {config_path}")

        MonitorConfigLoader._apply_env(config)
        return config

    @staticmethod
    def _parse(raw_config: Dict[str, Any]) -> MonitorConfig:
        config = MonitorConfig()

        try:
            if "broker" in raw_config:
                config.broker = BrokerConfig(**_section(raw_config, "broker"))
            if "auth" in raw_config:
                config.auth = AuthConfig(**_section(raw_config, "auth"))
            if "liveness" in raw_config:
                config.liveness = LivenessConfig(**_section(raw_config, "liveness"))
            if "history" in raw_config:
                config.history = HistoryConfig(**_section(raw_config, "history"))
            if "storage" in raw_config:
                config.storage = StorageConfig(**_section(raw_config, "storage"))
            if "logging" in raw_config:
                config.logging = LoggingConfig(**_section(raw_config, "logging"))
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration key: {e}") from e

        if "devices" in raw_config and raw_config["devices"]:
            config.devices = _parse_devices(raw_config["devices"])

        return config

    @staticmethod
    def _apply_env(config: MonitorConfig) -> None:
        """Credentials always come from the environment when set"""
        config.auth.client_id = os.getenv("YOLINK_UAC_ID", config.auth.client_id)
        config.auth.client_secret = os.getenv("YOLINK_UAC_SECRET", config.auth.client_secret)
        config.broker.home_id = os.getenv("YOLINK_HOME_ID", config.broker.home_id)

        level = os.getenv("TANKWATCH_LOG_LEVEL")
        if level:
            config.logging.level = level.upper()

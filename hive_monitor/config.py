"""
Monitor configuration
监控器配置

Built once from the environment at startup and passed explicitly to the
scheduler, aggregator and publisher. Never mutated afterwards.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .errors import ConfigError

DEFAULT_HIVE_API_URL = "https://api2.hiveos.farm/api/v2"
DEFAULT_MQTT_PORT = 1883
DEFAULT_RUN_INTERVAL = 300  # seconds
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "/logs"
DEFAULT_MAX_LOG_FILES = 7

REQUIRED_VARIABLES = {
    "HIVE_API_TOKEN": "Get your token from: https://hiveos.farm -> Account Settings -> API",
    "HIVE_FARM_ID": "Find your Farm ID in the HiveOS dashboard URL",
    "MQTT_BROKER": "Set this to your MQTT broker IP address or hostname",
}

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MonitorConfig:
    """Immutable runtime configuration"""

    hive_api_token: str = field(repr=False)
    farm_id: str
    mqtt_broker: str
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = field(default=None, repr=False)
    mqtt_client_id: str = ""
    run_interval: int = DEFAULT_RUN_INTERVAL
    log_level: str = DEFAULT_LOG_LEVEL
    hive_api_url: str = DEFAULT_HIVE_API_URL
    enable_file_logging: bool = True
    log_dir: str = DEFAULT_LOG_DIR
    max_log_files: int = DEFAULT_MAX_LOG_FILES

    connect_timeout: float = 5.0
    io_timeout: float = 2.0
    http_timeout: float = 30.0
    backoff_interval: int = 30

    def __post_init__(self):
        if not self.mqtt_client_id:
            object.__setattr__(self, "mqtt_client_id", f"hive-monitor-{self.farm_id}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        """
        Build configuration from environment variables

        Raises:
            ConfigError: Listing every missing or invalid variable
        """
        env = os.environ if environ is None else environ
        problems = []

        for name, hint in REQUIRED_VARIABLES.items():
            if not env.get(name, "").strip():
                problems.append(f"{name} environment variable is required ({hint})")

        def _int(name: str, default: int, minimum: int = 1) -> int:
            raw = env.get(name, "").strip()
            if not raw:
                return default
            try:
                value = int(raw)
            except ValueError:
                problems.append(f"{name} must be an integer, got: {raw!r}")
                return default
            if value < minimum:
                problems.append(f"{name} must be >= {minimum}, got: {value}")
            return value

        mqtt_port = _int("MQTT_PORT", DEFAULT_MQTT_PORT)
        if mqtt_port > 65535:
            problems.append(f"MQTT_PORT must be between 1-65535, got: {mqtt_port}")
        run_interval = _int("RUN_INTERVAL", DEFAULT_RUN_INTERVAL)
        max_log_files = _int("MAX_LOG_FILES", DEFAULT_MAX_LOG_FILES, minimum=0)

        log_level = env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL
        if log_level not in VALID_LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}, got: {log_level!r}")

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems), problems)

        return cls(
            hive_api_token=env["HIVE_API_TOKEN"].strip(),
            farm_id=env["HIVE_FARM_ID"].strip(),
            mqtt_broker=env["MQTT_BROKER"].strip(),
            mqtt_port=mqtt_port,
            mqtt_username=env.get("MQTT_USERNAME") or None,
            mqtt_password=env.get("MQTT_PASSWORD") or None,
            mqtt_client_id=env.get("MQTT_CLIENT_ID", "").strip(),
            run_interval=run_interval,
            log_level=log_level,
            hive_api_url=(env.get("HIVE_API_URL") or DEFAULT_HIVE_API_URL).rstrip("/"),
            enable_file_logging=_parse_bool(env.get("ENABLE_FILE_LOGGING"), True),
            log_dir=env.get("LOG_DIR") or DEFAULT_LOG_DIR,
            max_log_files=max_log_files,
        )

    def summary(self) -> Dict[str, str]:
        """Configuration summary for the startup banner, secrets omitted"""
        return {
            "Farm ID": self.farm_id,
            "MQTT Broker": f"{self.mqtt_broker}:{self.mqtt_port}",
            "MQTT Auth": f"Enabled (username: {self.mqtt_username})" if self.mqtt_username else "Disabled",
            "Update Interval": f"{self.run_interval} seconds",
            "Log Level": self.log_level,
            "File Logging": f"{self.log_dir} ({self.max_log_files} files)" if self.enable_file_logging else "Disabled",
        }

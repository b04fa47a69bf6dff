"""
Configuration for the Telemetry Pipeline

Builds one explicit AppConfig value from an optional YAML file overlaid with
environment variables. Every component receives the parts it needs through
its constructor; nothing is kept in module-level state.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import yaml

from src.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "TELEMETRY_"


@dataclass
class DatabaseConfig:
    url: Optional[str] = None
    store_tablename: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None


@dataclass
class DestinationConfig:
    url: Optional[str] = None
    password: Optional[str] = None


@dataclass
class BusConfig:
    server: Optional[str] = None
    topic: str = "#"
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    group_id: str = "telemetry2db"
    max_tries: int = 10


@dataclass
class ReconciliationConfig:
    time_field: str = "timestamp"
    tolerance_seconds: Optional[float] = None
    repeat_budget: int = 25
    backfill_policy: str = "replay_source"
    backfill_on_drain: bool = True
    key_fields: List[str] = field(default_factory=lambda: ["time"])
    raw_query: Optional[str] = None
    channel_size: int = 1000
    validate_order: bool = False
    dry_run: bool = False

    @property
    def tolerance(self) -> Optional[timedelta]:
        if self.tolerance_seconds is None:
            return None
        return timedelta(seconds=self.tolerance_seconds)


@dataclass
class AppConfig:
    """Complete configuration of one process invocation."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    destination: DestinationConfig = field(default_factory=DestinationConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    mapping: List[Dict[str, Any]] = field(default_factory=list)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)

    def require_store(self) -> None:
        """
        Check the primary store settings.

        Raises:
            ConfigurationError: If URL or table name is missing
        """
        if not self.database.url:
            raise ConfigurationError(f"Store URL not defined (set {ENV_PREFIX}STORE_URL)")
        if not self.database.store_tablename:
            raise ConfigurationError(
                f"Database table not defined to store telemetry data (set {ENV_PREFIX}STORE_TABLENAME)"
            )

    def require_destination(self) -> None:
        """
        Check the settings needed for a reconciliation run.

        Raises:
            ConfigurationError: If the destination URL is missing
        """
        self.require_store()
        if not self.destination.url:
            raise ConfigurationError(
                f"Destination {ENV_PREFIX}DEST_URL parameter not defined"
            )

    def require_bus(self) -> None:
        self.require_store()
        if not self.bus.server:
            raise ConfigurationError(f"Message bus server not defined (set {ENV_PREFIX}BUS_SERVER)")


TRUE_VALUES = ("true", "yes", "on", "1")
FALSE_VALUES = ("false", "no", "off", "0")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigurationError(f"Setting '{key}' must be a boolean, got {value!r}")


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Setting '{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Setting '{key}' must be an integer, got {value!r}") from e


def _as_seconds(value: Any, key: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"Setting '{key}' must be a number of seconds, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Setting '{key}' must be a number of seconds, got {value!r}") from e


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    return value


def load_yaml(path: str) -> Dict[str, Any]:
    """
    Read a YAML configuration file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    logger.debug(f"Parsing configuration file {path}")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def from_dict(data: Mapping[str, Any]) -> AppConfig:
    """Build an AppConfig from parsed YAML content."""
    database = _section(data, "database")
    bus = _section(data, "bus")
    recon = _section(data, "reconciliation")
    mapping = data.get("mapping") or []
    if not isinstance(mapping, list):
        raise ConfigurationError("Configuration section 'mapping' must be a list")

    config = AppConfig(
        database=DatabaseConfig(
            url=database.get("url"),
            store_tablename=database.get("storeTablename"),
            user=database.get("user"),
            password=database.get("password"),
        ),
        destination=DestinationConfig(**{
            k: v for k, v in _section(data, "destination").items() if k in ("url", "password")
        }),
        bus=BusConfig(
            server=bus.get("server"),
            topic=bus.get("topic") or "#",
            username=bus.get("username"),
            password=bus.get("password"),
            client_id=bus.get("clientId"),
            group_id=bus.get("groupId") or "telemetry2db",
            max_tries=_as_int(bus.get("maxTries", 10), "bus.maxTries"),
        ),
        mapping=mapping,
    )

    rc = config.reconciliation
    rc.time_field = recon.get("timeField", rc.time_field)
    rc.tolerance_seconds = _as_seconds(
        recon.get("toleranceSeconds", rc.tolerance_seconds), "toleranceSeconds"
    )
    rc.repeat_budget = _as_int(recon.get("repeatBudget", rc.repeat_budget), "repeatBudget")
    rc.backfill_policy = recon.get("backfillPolicy", rc.backfill_policy)
    rc.backfill_on_drain = _as_bool(recon.get("backfillOnDrain", rc.backfill_on_drain), "backfillOnDrain")
    rc.key_fields = list(recon.get("keyFields", rc.key_fields))
    rc.raw_query = recon.get("rawQuery", rc.raw_query)
    rc.channel_size = _as_int(recon.get("channelSize", rc.channel_size), "channelSize")
    rc.validate_order = _as_bool(recon.get("validateOrder", rc.validate_order), "validateOrder")
    rc.dry_run = _as_bool(recon.get("dryRun", rc.dry_run), "dryRun")
    return config


def apply_environment(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Overlay TELEMETRY_* environment variables onto ``config``."""
    env = os.environ if environ is None else environ

    def get(name: str) -> Optional[str]:
        return env.get(ENV_PREFIX + name) or None

    config.database.url = get("STORE_URL") or config.database.url
    config.database.store_tablename = get("STORE_TABLENAME") or config.database.store_tablename
    config.database.user = get("STORE_USER") or config.database.user
    config.database.password = get("STORE_PASS") or config.database.password

    config.destination.url = get("DEST_URL") or config.destination.url
    config.destination.password = get("DEST_PASS") or config.destination.password

    config.bus.server = get("BUS_SERVER") or config.bus.server
    config.bus.topic = get("BUS_TOPIC") or config.bus.topic
    config.bus.username = get("BUS_USERNAME") or config.bus.username
    config.bus.password = get("BUS_PASSWORD") or config.bus.password
    return config


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load the configuration of one process invocation.

    Args:
        path: Optional YAML file
        environ: Environment to read (defaults to os.environ)

    Returns:
        AppConfig with environment overrides applied
    """
    config = from_dict(load_yaml(path)) if path else AppConfig()
    config = apply_environment(config, environ)

    logger.info(f"Store table: {config.database.store_tablename}")
    logger.info(f"Bus server: {config.bus.server}, topic: {config.bus.topic}")
    return config

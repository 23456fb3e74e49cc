"""Pool configuration: reading config.yaml and checking its values."""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo

import yaml

log = logging.getLogger(__name__)

CONFIG_NAME = "config.yaml"
EXAMPLE_NAME = "config.yaml.example"
SYSTEM_CONFIG_PATH = Path("/etc/pdm/config.yaml")
TELEMETRY_MODES = frozenset({"manual", "csv", "webhook"})
DEFAULT_HISTORY_DAYS = 30

_CLOCK = re.compile(r"([01]?\d|2[0-3]):([0-5]\d)")
_NULLS = frozenset({"", "~", "null", "Null", "NULL"})
_BOOLS = {"true": True, "yes": True, "on": True, "y": True,
          "false": False, "no": False, "off": False, "n": False}


class ConfigError(ValueError):
    """The configuration could not be read or holds an invalid value."""


def _parse_clock(text: str) -> tuple[int, int]:
    match = _CLOCK.fullmatch(text)
    if match is None:
        raise ValueError(f"cannot parse {text!r} as HH:MM")
    return int(match.group(1)), int(match.group(2))


def _load_timezone(name: str) -> dt.tzinfo:
    """Resolve a zone name; empty and ``UTC`` mean UTC, ``Local`` the host zone."""
    if name in ("", "UTC"):
        return dt.timezone.utc
    if name == "Local":
        return dt.datetime.now().astimezone().tzinfo or dt.timezone.utc
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError, OSError) as exc:
        raise ValueError(f"unknown time zone {name}") from exc


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value in _NULLS)


def _convert(key: str, value: Any, kind: str) -> Any:
    try:
        if not isinstance(value, str):
            raise ValueError
        if kind == "bool":
            return _BOOLS[value.lower()]
        return {"str": str, "float": float, "int": int}[kind](value)
    except (KeyError, ValueError) as exc:
        raise ConfigError(f"YAML parse error: {key} must be {kind}, got {value!r}") from exc


@dataclass
class PoolConfig:
    name: str = ""
    mcap: float = 0.0
    initial_s: float = 0.0


@dataclass
class ResourceConfig:
    unit: str = ""


@dataclass
class TelemetryConfig:
    mode: str = ""
    csv_path: str = ""


@dataclass
class ScheduleConfig:
    run_time: str = ""
    timezone: str = ""


@dataclass
class DashboardConfig:
    port: int = 0
    show_history_days: int = 0


@dataclass
class AlertsConfig:
    enabled: bool = False
    webhook_url: str = ""


@dataclass
class AppConfig:
    """The whole of config.yaml."""

    pool: PoolConfig = field(default_factory=PoolConfig)
    resource: ResourceConfig = field(default_factory=ResourceConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "AppConfig":
        """Build a configuration from parsed YAML; missing keys take zero values."""
        data = {} if _is_null(data) else data
        if not isinstance(data, Mapping):
            raise ConfigError("YAML parse error: top level must be a mapping")
        sections = {}
        for section in fields(cls):
            raw = data.get(section.name)
            raw = {} if _is_null(raw) else raw
            if not isinstance(raw, Mapping):
                raise ConfigError(f"YAML parse error: {section.name} must be a mapping")
            section_cls = section.default_factory
            sections[section.name] = section_cls(**{
                f.name: _convert(f.name, raw[f.name], f.type)
                for f in fields(section_cls)
                if not _is_null(raw.get(f.name))
            })
        return cls(**sections)


def parse_config(text: str | bytes) -> AppConfig:
    """Parse YAML text into a configuration without validating it."""
    try:
        data = yaml.load(text, Loader=yaml.BaseLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error: {exc}") from exc
    return AppConfig.from_dict(data)


def validate_config(cfg: AppConfig) -> AppConfig:
    """Check every rule on the configuration and fill in defaults."""
    if cfg.pool.mcap <= 0:
        raise ConfigError("pool.mcap must be > 0")
    if not 0 <= cfg.pool.initial_s <= cfg.pool.mcap:
        raise ConfigError("pool.initial_s must be [0, mcap]")
    if cfg.telemetry.mode not in TELEMETRY_MODES:
        raise ConfigError("telemetry.mode must be 'manual', 'csv', or 'webhook'")
    try:
        _parse_clock(cfg.schedule.run_time)
    except ValueError as exc:
        raise ConfigError("schedule.run_time must be HH:MM format") from exc
    try:
        _load_timezone(cfg.schedule.timezone)
    except ValueError as exc:
        raise ConfigError(f"schedule.timezone is invalid: {exc}") from exc
    if not 1024 <= cfg.dashboard.port <= 65535:
        raise ConfigError("dashboard.port must be 1024-65535")
    if cfg.dashboard.show_history_days <= 0:
        cfg.dashboard.show_history_days = DEFAULT_HISTORY_DAYS
    return cfg


def _copy_example(base: Path) -> None:
    try:
        example = (base / EXAMPLE_NAME).read_bytes()
    except OSError as exc:
        raise ConfigError(f"{EXAMPLE_NAME} not found: {exc}") from exc
    try:
        (base / CONFIG_NAME).write_bytes(example)
    except OSError as exc:
        raise ConfigError(f"failed to write {CONFIG_NAME}: {exc}") from exc
    log.info("Copied %s to %s - please edit", EXAMPLE_NAME, CONFIG_NAME)


def load_config(
    base_dir: str | Path = ".",
    system_path: str | Path = SYSTEM_CONFIG_PATH,
) -> AppConfig:
    """Read and validate config.yaml from ``base_dir`` or ``system_path``,
    copying the example into ``base_dir`` when neither exists."""
    base = Path(base_dir)
    local = base / CONFIG_NAME
    try:
        data = local.read_bytes()
    except OSError:
        try:
            data = Path(system_path).read_bytes()
        except OSError:
            try:
                _copy_example(base)
            except ConfigError as exc:
                raise ConfigError(
                    f"no config.yaml found and failed to copy example: {exc}"
                ) from exc
            try:
                data = local.read_bytes()
            except OSError as exc:
                raise ConfigError(f"failed to read config.yaml after copy: {exc}") from exc

    cfg = validate_config(parse_config(data))
    log.info("Loaded config: Pool=%s, Mode=%s, Port=%d",
             cfg.pool.name, cfg.telemetry.mode, cfg.dashboard.port)
    return cfg
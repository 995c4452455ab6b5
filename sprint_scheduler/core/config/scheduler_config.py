from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml


WEEKDAYS: dict[str, int] = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}


@dataclass(frozen=True)
class SchedulerConfig:
    hours_per_day: float = 8.0
    work_week: frozenset[int] = frozenset({0, 1, 2, 3, 4})
    release_buffer_days: int = 0
    schedule_with_margin: bool = False
    level_resources: bool = True
    horizon_days: int = 3650
    default_holidays: frozenset[dt.date] = frozenset()


DEFAULT_CONFIG = SchedulerConfig()


class ConfigError(ValueError):
    pass


def parse_work_week(raw: Any, *, where: str = "work_week") -> frozenset[int]:
    if not isinstance(raw, list):
        raise ConfigError(f"{where} must be a list of weekday names")
    days: set[int] = set()
    for item in raw:
        if not isinstance(item, str) or item.strip().lower()[:3] not in WEEKDAYS:
            raise ConfigError(f"{where} items must be weekday names (mon..sun), got {item!r}")
        days.add(WEEKDAYS[item.strip().lower()[:3]])
    return frozenset(days)


def parse_date(raw: Any, *, where: str) -> dt.date:
    # yaml.safe_load already turns ISO dates into date objects
    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, dt.date):
        return raw
    if isinstance(raw, str):
        try:
            return dt.date.fromisoformat(raw.strip())
        except ValueError as e:
            raise ConfigError(f"{where} must be an ISO date (YYYY-MM-DD), got {raw!r}") from e
    raise ConfigError(f"{where} must be an ISO date (YYYY-MM-DD), got {raw!r}")


def apply_overrides(base: SchedulerConfig, raw: dict[str, Any]) -> SchedulerConfig:
    """Return ``base`` with the keys of ``raw`` applied.

    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    if not isinstance(raw, dict):
        raise ConfigError("settings must be a mapping")

    changes: dict[str, Any] = {}
    for key, value in raw.items():
        if key == "hours_per_day":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError("hours_per_day must be a positive number")
            changes[key] = float(value)
        elif key == "work_week":
            changes[key] = parse_work_week(value)
        elif key in ("release_buffer_days", "horizon_days"):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{key} must be a non-negative integer")
            changes[key] = value
        elif key in ("schedule_with_margin", "level_resources"):
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be a boolean")
            changes[key] = value
        elif key == "default_holidays":
            if not isinstance(value, list):
                raise ConfigError("default_holidays must be a list of dates")
            changes[key] = frozenset(
                parse_date(v, where=f"default_holidays[{i}]") for i, v in enumerate(value)
            )
        else:
            raise ConfigError(f"unknown setting: {key}")
    return replace(base, **changes)


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load scheduler settings from a YAML file.

    Format:
      hours_per_day: 8
      work_week: [mon, tue, wed, thu, fri]
      release_buffer_days: 2
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("config file must be a mapping of setting -> value")
    return raw


def load_and_merge(
    config_file: str | None, document_settings: dict[str, Any] | None = None
) -> SchedulerConfig:
    """Defaults, then the config file, then the sprint document's own settings."""
    cfg = DEFAULT_CONFIG
    if config_file:
        cfg = apply_overrides(cfg, load_config_file(config_file))
    if document_settings:
        cfg = apply_overrides(cfg, document_settings)
    return cfg

# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for Agency Ledger.

This module is responsible for:
- loading the application configuration from a TOML file,
- applying defaults for every optional setting,
- exposing a typed, frozen dataclass used by the rest of the application.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .db import DatabaseConfig
from .dre import DEFAULT_TAX_RATE
from .scheduler import DAY_OVERFLOW_POLICIES

DEFAULT_CONFIG_FILENAME = "agency_ledger_config.toml"
DEFAULT_DB_PATH = "data/db/agency_ledger.sqlite"
DISPLAY_MODES = ("table", "csv", "both")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for Agency Ledger.

    This aggregates:
    - the database configuration (None when the database is disabled),
    - the presentation currency,
    - the fallback tax rate used by the income statement when no company
      settings row exists yet,
    - billing forecast, installment schedule and reconciler options,
    - display and logging options for the CLI.
    """

    database: Optional[DatabaseConfig]
    currency: str
    default_tax_rate: float
    upcoming_days: int
    day_overflow: str
    override_paused: bool
    display_mode: str
    amount_decimals: int
    log_level: str


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        return {}
    return section


def _parse_choice(value: Any, choices: tuple[str, ...], key: str) -> str:
    text = str(value)
    if text not in choices:
        raise ValueError(
            f"Invalid value for '{key}' in the configuration: {text!r}. "
            f"Expected one of: {', '.join(choices)}."
        )
    return text


def build_app_config(raw: Mapping[str, Any], base_dir: Path) -> AppConfig:
    """
    Build an AppConfig from parsed TOML data.

    Expected (all optional) sections
    --------------------------------
    [database]
        enabled (bool, default true), engine ("sqlite"), path.
    [company]
        currency (default "BRL").
    [reporting]
        default_tax_rate (percent, default 11.0).
    [billing]
        upcoming_days (default 7).
    [installments]
        day_overflow ("roll-forward" or "clamp", default "roll-forward").
    [reconciler]
        override_paused (default true).
    [display]
        mode ("table" | "csv" | "both"), amount_decimals (default 2).
    [logging]
        level (default "WARNING").

    Relative paths are resolved against `base_dir`.
    """
    database_section = _section(raw, "database")
    database_config: Optional[DatabaseConfig] = None
    if bool(database_section.get("enabled", True)):
        db_engine = str(database_section.get("engine") or "sqlite")
        db_path_raw = database_section.get("path") or DEFAULT_DB_PATH
        db_path = (base_dir / str(db_path_raw)).resolve()
        database_config = DatabaseConfig(engine=db_engine, path=db_path)

    company_section = _section(raw, "company")
    currency = str(company_section.get("currency") or "BRL")

    reporting_section = _section(raw, "reporting")
    try:
        default_tax_rate = float(
            reporting_section.get("default_tax_rate", DEFAULT_TAX_RATE)
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'reporting.default_tax_rate' in the configuration. "
            "Expected a number."
        ) from exc
    if not 0.0 <= default_tax_rate <= 100.0:
        raise ValueError("'reporting.default_tax_rate' must be between 0 and 100.")

    billing_section = _section(raw, "billing")
    try:
        upcoming_days = int(billing_section.get("upcoming_days", 7))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'billing.upcoming_days' in the configuration. "
            "Expected an integer."
        ) from exc

    installments_section = _section(raw, "installments")
    day_overflow = _parse_choice(
        installments_section.get("day_overflow", "roll-forward"),
        DAY_OVERFLOW_POLICIES,
        "installments.day_overflow",
    )

    reconciler_section = _section(raw, "reconciler")
    override_paused = bool(reconciler_section.get("override_paused", True))

    display_section = _section(raw, "display")
    display_mode = _parse_choice(
        display_section.get("mode", "table"), DISPLAY_MODES, "display.mode"
    )
    try:
        amount_decimals = int(display_section.get("amount_decimals", 2))
    except (TypeError, ValueError):
        amount_decimals = 2

    logging_section = _section(raw, "logging")
    log_level = _parse_choice(
        str(logging_section.get("level", "WARNING")).upper(),
        LOG_LEVELS,
        "logging.level",
    )

    return AppConfig(
        database=database_config,
        currency=currency,
        default_tax_rate=default_tax_rate,
        upcoming_days=upcoming_days,
        day_overflow=day_overflow,
        override_paused=override_paused,
        display_mode=display_mode,
        amount_decimals=amount_decimals,
        log_level=log_level,
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the Agency Ledger application configuration from a TOML file.

    When `config_path` is None, ``agency_ledger_config.toml`` is looked up in
    the current working directory; if it does not exist the built-in
    defaults are used (SQLite database under ``data/db``). An explicitly
    given path that does not exist raises FileNotFoundError.

    All file paths in the TOML are resolved relative to the directory of the
    TOML file itself.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILENAME).resolve()
        if not config_file.is_file():
            return build_app_config({}, config_file.parent)
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    return build_app_config(raw, config_file.parent)

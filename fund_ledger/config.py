"""
Module: fund_ledger.config
Responsibility: Load the YAML settings file into frozen ``LedgerSettings``.
    This is the only module that reads configuration; services receive the
    parsed dataclass through the engine facade.

Failure modes:
    - FileNotFoundError if an explicit settings path does not exist.
    - yaml.YAMLError on malformed YAML.
    - ValueError on unknown sections or keys, or on an out-of-range value.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from fund_ledger.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///fund_ledger.db"
    fallback_url: str | None = None
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5
    pool_timeout: int = 30
    statement_timeout_ms: int | None = None


@dataclass(frozen=True)
class LedgerRules:
    admin_owner_id: int = 1
    admin_fund_name: str = "Admin fund"
    general_expense_aliases: tuple[str, ...] = ("general expense", "general_expense")
    deferred_payments_expense_type: str = "Deferred payments"
    max_concurrency_retries: int = 3


@dataclass(frozen=True)
class LedgerSettings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerRules = field(default_factory=LedgerRules)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def _build_section(cls: type, raw: dict[str, Any] | None, section: str):
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(
            f"Unknown keys in settings section '{section}': {sorted(unknown)}"
        )
    values = dict(raw)
    if "general_expense_aliases" in values:
        values["general_expense_aliases"] = tuple(values["general_expense_aliases"] or ())
    return cls(**values)


def settings_from_dict(data: dict[str, Any]) -> LedgerSettings:
    """Build settings from a parsed mapping; missing keys take defaults."""
    unknown = set(data) - {"database", "ledger"}
    if unknown:
        raise ValueError(f"Unknown settings sections: {sorted(unknown)}")

    settings = LedgerSettings(
        database=_build_section(DatabaseSettings, data.get("database"), "database"),
        ledger=_build_section(LedgerRules, data.get("ledger"), "ledger"),
    )
    if settings.ledger.max_concurrency_retries < 0:
        raise ValueError("ledger.max_concurrency_retries must be >= 0")
    return settings


def load_settings(path: Path | str | None = None) -> LedgerSettings:
    """Load settings from ``path`` or the bundled ``settings.yaml``."""
    settings_path = Path(path) if path is not None else _DEFAULT_SETTINGS_PATH
    settings = settings_from_dict(load_yaml_file(settings_path))
    logger.info(
        "settings_loaded",
        extra={
            "path": str(settings_path),
            "admin_owner_id": settings.ledger.admin_owner_id,
            "has_fallback_db": settings.database.fallback_url is not None,
        },
    )
    return settings

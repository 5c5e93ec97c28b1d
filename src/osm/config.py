from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class EngineSettings:
    busy_timeout_ms: int = 5000
    invoice_prefix: str = "FACT"
    currency: str = "MAD"


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "OpticalSalesManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    override = os.environ.get("OSM_DB_PATH", "").strip()
    db = Path(override) if override else base / "optical_sales.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def get_engine_settings() -> EngineSettings:
    raw_timeout = os.environ.get("OSM_BUSY_TIMEOUT_MS", "").strip()
    try:
        timeout = int(raw_timeout) if raw_timeout else EngineSettings.busy_timeout_ms
    except ValueError:
        raise ValueError(f"OSM_BUSY_TIMEOUT_MS must be an integer, got {raw_timeout!r}") from None
    if timeout < 0:
        raise ValueError("OSM_BUSY_TIMEOUT_MS must be >= 0")

    currency = os.environ.get("OSM_CURRENCY", "").strip().upper() or EngineSettings.currency
    return EngineSettings(busy_timeout_ms=timeout, currency=currency)

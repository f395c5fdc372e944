from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys

from ist.domain.errors import ValidationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    exports_dir: Path


@dataclass(frozen=True)
class Settings:
    user_id: Optional[str] = None
    tx_max_attempts: int = 5
    tx_backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 5.0
    purge_restores_stock: bool = False
    low_stock_threshold: int = 20


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "InventorySalesTracker", base_dir: Path | str | None = None) -> AppPaths:
    override = base_dir or os.environ.get("IST_DATA_DIR", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    exports = base / "exports"
    db = base / "tracker.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)
    exports.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, exports_dir=exports)


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer. Received: {raw}") from e
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}. Received: {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number. Received: {raw}") from e
    if value < 0:
        raise ValidationError(f"{name} must be >= 0. Received: {value}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"{name} must be a boolean. Received: {raw}")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()
    return Settings(
        user_id=(env.get("IST_USER_ID", "").strip() or None),
        tx_max_attempts=_env_int(env, "IST_TX_MAX_ATTEMPTS", defaults.tx_max_attempts, minimum=1),
        tx_backoff_seconds=_env_float(env, "IST_TX_BACKOFF_SECONDS", defaults.tx_backoff_seconds),
        busy_timeout_seconds=_env_float(env, "IST_BUSY_TIMEOUT_SECONDS", defaults.busy_timeout_seconds),
        purge_restores_stock=_env_bool(env, "IST_PURGE_RESTORES_STOCK", defaults.purge_restores_stock),
        low_stock_threshold=_env_int(env, "IST_LOW_STOCK_THRESHOLD", defaults.low_stock_threshold, minimum=0),
    )

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_BACKEND_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
_DOTENV_LOADED = False
_GRAPH_TARGET_LOGGED = False

DEFAULT_UPLOAD_FOLDER = "Shared Documents/Uploads"
DEFAULT_MAX_DISTANCE_KM = 0.5

# key -> (env var, default). A None default means the table is required.
_TABLE_ENV: dict[str, tuple[str, str | None]] = {
    "checkin": ("GRAPH_TBL_CHECKIN", None),
    "checkout": ("GRAPH_TBL_CHECKOUT", None),
    "leave": ("GRAPH_TBL_LEAVE", None),
    "users": ("GRAPH_TBL_USERS", None),
    "holidays": ("GRAPH_TBL_HOLIDAYS", None),
    "weekly_off": ("GRAPH_TBL_WEEKLY_OFF", None),
    "dayoffs": ("GRAPH_TBL_DAYOFFS", None),
    "leave_deletes": ("GRAPH_TBL_LEAVE_DELETES", "LeaveDeletes"),
}


def ensure_backend_env_loaded() -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)
    _DOTENV_LOADED = True


def _env(*names: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return ""


def _to_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        return default


def _to_positive_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        parsed = float(text)
    except ValueError:
        return default
    if parsed != parsed or parsed <= 0 or parsed == float("inf"):
        return default
    return parsed


@dataclass(frozen=True)
class Settings:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    site_id: str = ""
    workbook_path: str = ""
    upload_folder: str = DEFAULT_UPLOAD_FOLDER
    timeout_seconds: int = 15
    token_skew_seconds: int = 60
    header_cache_ttl_seconds: int = 600
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM
    cors_origins: tuple[str, ...] = ("*",)
    tables: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        ensure_backend_env_loaded()
        tables: dict[str, str] = {}
        for key, (env_name, default) in _TABLE_ENV.items():
            value = _env(env_name) or (default or "")
            if value:
                tables[key] = value
        origins = tuple(
            item.strip() for item in (os.getenv("CORS_ORIGINS") or "*").split(",") if item.strip()
        )
        return cls(
            tenant_id=_env("GRAPH_TENANT_ID", "AZURE_TENANT_ID"),
            client_id=_env("GRAPH_CLIENT_ID", "AZURE_CLIENT_ID"),
            client_secret=_env("GRAPH_CLIENT_SECRET", "AZURE_CLIENT_SECRET"),
            site_id=_env("GRAPH_SITE_ID"),
            workbook_path=_env("GRAPH_WORKBOOK_PATH"),
            upload_folder=_env("GRAPH_UPLOAD_FOLDER") or DEFAULT_UPLOAD_FOLDER,
            timeout_seconds=_to_int(os.getenv("GRAPH_TIMEOUT_SECONDS"), 15),
            token_skew_seconds=_to_int(os.getenv("GRAPH_TOKEN_SKEW_SECONDS"), 60),
            header_cache_ttl_seconds=_to_int(os.getenv("HEADER_CACHE_TTL_SECONDS"), 600),
            max_distance_km=_to_positive_float(
                os.getenv("MAX_DISTANCE_KM") or os.getenv("NEXT_PUBLIC_MAX_DISTANCE_KM"),
                DEFAULT_MAX_DISTANCE_KM,
            ),
            cors_origins=origins or ("*",),
            tables=tables,
        )

    def table_name(self, key: str) -> str:
        if key not in _TABLE_ENV:
            raise ConfigurationError(f"Unknown table key: {key}")
        value = self.tables.get(key)
        if not value:
            raise ConfigurationError(f"{_TABLE_ENV[key][0]} is not set")
        return value

    def has_table(self, key: str) -> bool:
        return bool(self.tables.get(key))


settings = Settings.from_env()


def validate_graph_settings(config: Settings) -> None:
    if not config.tenant_id or not config.client_id or not config.client_secret:
        raise ConfigurationError(
            "Missing Graph/Azure AD credentials (tenant/clientId/clientSecret)"
        )
    if not config.site_id:
        raise ConfigurationError("GRAPH_SITE_ID is not set")
    if not config.workbook_path:
        raise ConfigurationError("GRAPH_WORKBOOK_PATH is not set")


def log_graph_target_once(config: Settings) -> None:
    global _GRAPH_TARGET_LOGGED
    if _GRAPH_TARGET_LOGGED:
        return
    logger.info(
        "Graph: workbook %s on site %s (tables: %s)",
        config.workbook_path or "<empty>",
        config.site_id or "<empty>",
        ", ".join(sorted(config.tables)) or "<none>",
    )
    _GRAPH_TARGET_LOGGED = True


def get_graph_error_payload(config: Settings) -> dict[str, Any]:
    return {
        "ok": False,
        "error": "Graph workbook unavailable",
        "hint": "Check GRAPH_SITE_ID/GRAPH_WORKBOOK_PATH and the app registration credentials",
        "workbook": config.workbook_path,
    }

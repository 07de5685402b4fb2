from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any, Callable
from urllib.parse import quote

import requests

from .cache import TTLCache
from .config import Settings, log_graph_target_once, validate_graph_settings
from .errors import ConfigurationError, GraphError

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
LOGIN_BASE = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

_TOKEN_KEY = "graph"
_TOKEN_CACHE_MAX_SECONDS = 24 * 3600


def encode_path(path: str) -> str:
    return "/".join(quote(part, safe="") for part in path.lstrip("/").split("/") if part)


def _response_text(response: requests.Response) -> str:
    try:
        return response.text
    except (UnicodeDecodeError, AttributeError):
        return ""


class GraphClient:
    def __init__(
        self,
        config: Settings,
        *,
        session: requests.Session | None = None,
        token_cache: TTLCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        if token_cache is None:
            token_cache = TTLCache(_TOKEN_CACHE_MAX_SECONDS, clock=clock)
        self.token_cache = token_cache

    def _access_token(self) -> str:
        cached = self.token_cache.get(_TOKEN_KEY)
        if cached:
            return str(cached)

        validate_graph_settings(self.config)
        log_graph_target_once(self.config)
        url = f"{LOGIN_BASE}/{self.config.tenant_id}/oauth2/v2.0/token"
        try:
            response = self.session.post(
                url,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "client_credentials",
                    "scope": GRAPH_SCOPE,
                },
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GraphError(f"Token request failed: {exc}") from exc
        if not response.ok:
            raise GraphError(
                f"Token error {response.status_code}: {_response_text(response)}",
                status_code=response.status_code,
            )

        payload = response.json()
        token = str(payload.get("access_token") or "")
        if not token:
            raise GraphError("Token response did not contain an access_token")
        expires_in = int(payload.get("expires_in") or 3600)
        lifetime = max(expires_in - self.config.token_skew_seconds, 0)
        if lifetime > 0:
            self.token_cache.set(_TOKEN_KEY, token, ttl_seconds=lifetime)
        return token

    def request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: Any | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        url = path if path.startswith("http") else f"{GRAPH_BASE}{path}"
        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {self._access_token()}"
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                data=data,
                headers=request_headers,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GraphError(f"{action} failed: {exc}") from exc
        if not response.ok:
            if response.status_code == 401:
                self.token_cache.invalidate(_TOKEN_KEY)
            raise GraphError(
                f"{action} failed {response.status_code}: {_response_text(response)}",
                status_code=response.status_code,
            )
        return response

    def get_json(self, path: str, *, action: str) -> dict[str, Any]:
        return self.request("GET", path, action=action).json() or {}

    def workbook_base_path(self) -> str:
        if not self.config.site_id:
            raise ConfigurationError("GRAPH_SITE_ID is not set")
        if not self.config.workbook_path:
            raise ConfigurationError("GRAPH_WORKBOOK_PATH is not set")
        return f"/sites/{self.config.site_id}/drive/root:/{encode_path(self.config.workbook_path)}:/workbook"

    def table_path(self, table_name: str) -> str:
        return f"{self.workbook_base_path()}/tables/{quote(table_name, safe='')}"

    def table_header_values(self, table_name: str) -> list[Any]:
        data = self.get_json(f"{self.table_path(table_name)}/headerRowRange", action="Read headers")
        values = data.get("values") or [[]]
        return list(values[0]) if values else []

    def table_range_values(self, table_name: str) -> list[list[Any]]:
        data = self.get_json(f"{self.table_path(table_name)}/range", action="Read table")
        return [list(row) for row in (data.get("values") or [])]

    def add_table_rows(self, table_name: str, rows: list[list[Any]]) -> None:
        self.request(
            "POST",
            f"{self.table_path(table_name)}/rows/add",
            action="Add row",
            json={"values": rows},
        )

    def table_row_at(self, table_name: str, index: int) -> list[Any]:
        data = self.get_json(
            f"{self.table_path(table_name)}/rows/itemAt(index={int(index)})",
            action="Read row",
        )
        values = data.get("values") or [[]]
        return list(values[0]) if values else []

    def update_table_row_at(self, table_name: str, index: int, values: list[Any]) -> None:
        self.request(
            "PATCH",
            f"{self.table_path(table_name)}/rows/itemAt(index={int(index)})",
            action="Update row",
            json={"values": [values]},
        )

    def upload_file_base64(self, file_name: str, content_base64: str) -> dict[str, str]:
        if not self.config.site_id:
            raise ConfigurationError("GRAPH_SITE_ID is not set")
        clean = content_base64.split(",", 1)[1] if "," in content_base64 else content_base64
        try:
            body = base64.b64decode(clean, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("contentBase64 is not valid base64") from exc

        folder = encode_path(self.config.upload_folder)
        path = f"/sites/{self.config.site_id}/drive/root:/{folder}/{quote(file_name, safe='')}:/content"
        data = self.request("PUT", path, action="Upload", data=body).json() or {}
        url = str(data.get("webUrl") or data.get("@microsoft.graph.downloadUrl") or "")
        return {"url": url, "id": str(data.get("id") or "")}

    def health_check(self) -> dict[str, Any]:
        status: dict[str, Any] = {"token": False, "workbook": False, "tables": {}, "uploadFolder": False}
        try:
            status["token"] = bool(self._access_token())
        except (GraphError, ConfigurationError) as exc:
            logger.warning("Graph health: token unavailable: %s", exc)
            return status

        try:
            self.request("GET", self.workbook_base_path(), action="Read workbook")
            status["workbook"] = True
        except (GraphError, ConfigurationError) as exc:
            logger.warning("Graph health: workbook unavailable: %s", exc)

        for key, table_name in sorted(self.config.tables.items()):
            try:
                self.table_range_values(table_name)
                status["tables"][key] = True
            except (GraphError, ConfigurationError) as exc:
                logger.warning("Graph health: table %s (%s) unavailable: %s", key, table_name, exc)
                status["tables"][key] = False

        try:
            folder = encode_path(self.config.upload_folder)
            self.request("GET", f"/sites/{self.config.site_id}/drive/root:/{folder}", action="Read folder")
            status["uploadFolder"] = True
        except (GraphError, ConfigurationError) as exc:
            logger.warning("Graph health: upload folder unavailable: %s", exc)
        return status

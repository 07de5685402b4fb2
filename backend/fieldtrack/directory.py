from __future__ import annotations

import logging
import re
from typing import Any, Iterable, MutableMapping, Sequence

from .config import Settings, settings
from .errors import GraphError
from .store import Column, TableSchema, TableStore, clean_text

logger = logging.getLogger(__name__)

USERS_SCHEMA = TableSchema(
    name="users",
    columns=(
        Column("email", ("email",)),
        Column("username", ("username",)),
        Column("name", ("name",)),
        Column("employeeNo", ("employeeNo",)),
        Column("district", ("district",)),
        Column("group", ("group",)),
        Column("supervisorEmail", ("supervisorEmail",)),
        Column("province", ("province",)),
        Column("channel", ("channel",)),
        Column("role", ("role",)),
    ),
)

ENTRY_FIELDS = tuple(column.key for column in USERS_SCHEMA.columns)
BACKFILL_FIELDS = (
    "name",
    "employeeNo",
    "district",
    "group",
    "supervisorEmail",
    "province",
    "channel",
)
SUPERVISOR_KEYWORDS = ("supervisor", "manager", "head")
ROLES = ("SUPERVISOR", "AGENT")


def normalize_key(value: Any) -> str:
    return clean_text(value).lower()


def entry_identity(entry: dict[str, str]) -> str:
    return entry.get("username") or entry.get("email") or ""


class UserDirectory:
    def __init__(self, entries: Iterable[dict[str, str]] = ()) -> None:
        self.entries: list[dict[str, str]] = []
        self._by_employee_no: dict[str, dict[str, str]] = {}
        self._by_identity: dict[str, dict[str, str]] = {}
        self._by_name: dict[str, dict[str, str]] = {}
        for entry in entries:
            self.add(entry)

    @classmethod
    def from_rows(cls, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> "UserDirectory":
        columns = USERS_SCHEMA.resolve(headers)
        entries: list[dict[str, str]] = []
        for row in rows:
            entry = {key: columns.text(row, key) for key in ENTRY_FIELDS}
            if not any(entry.values()):
                continue
            entries.append(entry)
        return cls(entries)

    @classmethod
    def load(cls, store: TableStore, config: Settings = settings) -> "UserDirectory":
        table = config.table_name("users")
        return cls.from_rows(store.get_headers(table), store.get_rows(table))

    def add(self, entry: dict[str, str]) -> None:
        normalized = {key: clean_text(entry.get(key)) for key in ENTRY_FIELDS}
        self.entries.append(normalized)
        # First row wins for duplicate keys.
        for index, key in (
            (self._by_employee_no, normalize_key(normalized["employeeNo"])),
            (self._by_identity, normalize_key(normalized["username"])),
            (self._by_identity, normalize_key(normalized["email"])),
            (self._by_name, normalize_key(normalized["name"])),
        ):
            if key and key not in index:
                index[key] = normalized

    def lookup(
        self,
        *,
        employee_no: Any = None,
        identity: Any = None,
        name: Any = None,
    ) -> dict[str, str] | None:
        for index, value in (
            (self._by_employee_no, employee_no),
            (self._by_identity, identity),
            (self._by_name, name),
        ):
            key = normalize_key(value)
            if key and key in index:
                return index[key]
        return None

    def lookup_record(self, record: dict[str, Any]) -> dict[str, str] | None:
        return self.lookup(
            employee_no=record.get("employeeNo"),
            identity=record.get("email") or record.get("username"),
            name=record.get("name"),
        )

    def backfill(
        self,
        record: MutableMapping[str, Any],
        fields: Sequence[str] = BACKFILL_FIELDS,
    ) -> MutableMapping[str, Any]:
        """Fill empty attributes of ``record`` from its directory entry.

        Values already present on the record always win; only fields the
        record carries are touched.
        """
        entry = self.lookup_record(dict(record))
        if entry is None:
            return record
        for field_name in fields:
            if field_name not in record:
                continue
            if clean_text(record.get(field_name)):
                continue
            value = entry.get(field_name) or ""
            if value:
                record[field_name] = value
        return record

    def __len__(self) -> int:
        return len(self.entries)


def find_user(store: TableStore, identity: str, config: Settings = settings) -> dict[str, str] | None:
    target = normalize_key(identity)
    if not target:
        return None
    directory = UserDirectory.load(store, config)
    for entry in directory.entries:
        if target in (normalize_key(entry["username"]), normalize_key(entry["email"])):
            return entry
    return None


def _natural_key(value: str) -> list[Any]:
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", value)]


def list_users(store: TableStore, *, group: str | None = None, config: Settings = settings) -> list[dict[str, str]]:
    group_filter = normalize_key(group)
    directory = UserDirectory.load(store, config)

    users: list[dict[str, str]] = []
    for entry in directory.entries:
        identity = entry_identity(entry)
        if not entry["employeeNo"] or not identity:
            continue
        if group_filter and group_filter not in entry["group"].lower():
            continue
        users.append(
            {
                "employeeNo": entry["employeeNo"],
                "name": entry["name"] or identity,
                "username": entry["username"],
                "email": entry["email"],
                "group": entry["group"],
            }
        )

    users.sort(key=lambda item: _natural_key(item["employeeNo"]))
    return users


def _resolve_fallback(email: str, user: str, default_name: str, reason: str) -> dict[str, Any]:
    email_key = normalize_key(email)
    user_key = normalize_key(user)

    role = "AGENT"
    confidence = "low"
    if email_key and any(keyword in email_key for keyword in SUPERVISOR_KEYWORDS):
        role, confidence = "SUPERVISOR", "medium"
        reason = f"{reason}; matched supervisor keyword in email"
    elif user_key and any(keyword in user_key for keyword in SUPERVISOR_KEYWORDS):
        role = "SUPERVISOR"
        reason = f"{reason}; matched supervisor keyword in username"

    return {
        "role": role,
        "name": default_name,
        "email": email_key or user_key,
        "metadata": {},
        "resolution": {"source": "fallback", "confidence": confidence, "reason": reason},
    }


def resolve_user_role(
    store: TableStore,
    *,
    email: str | None = None,
    user: str | None = None,
    config: Settings = settings,
) -> dict[str, Any]:
    email_text = clean_text(email)
    user_text = clean_text(user)
    default_name = user_text or email_text or "User"
    identity = email_text or user_text

    if not config.has_table("users") or not identity:
        return _resolve_fallback(email_text, user_text, default_name, "No directory configured")

    try:
        entry = find_user(store, identity, config)
    except GraphError as exc:
        logger.error("Directory lookup failed for %s: %s", identity, exc)
        return _resolve_fallback(email_text, user_text, default_name, "Directory lookup failed")

    if entry is None:
        return _resolve_fallback(email_text, user_text, default_name, "User not found in directory")

    role = entry["role"].upper()
    return {
        "role": role if role in ROLES else "AGENT",
        "name": entry["name"] or default_name,
        "email": entry_identity(entry) or identity,
        "metadata": {field_name: entry[field_name] for field_name in BACKFILL_FIELDS if field_name != "name"},
        "resolution": {"source": "directory", "confidence": "high", "reason": "Resolved by Users table"},
    }

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from fastapi import HTTPException, status

from .config import Settings, settings
from .errors import ConfigurationError, GraphError
from .store import Column, ColumnMap, TableSchema, TableStore, WriteResult, clean_text, pick_header
from .timeparse import parse_date_param, parse_timestamp, to_date_part

logger = logging.getLogger(__name__)

_IDENTITY_NAMES = ("username", "email")

LEAVE_SCHEMA = TableSchema(
    name="leave",
    columns=(
        Column("dtISO", ("dtISO",), 0),
        Column("leaveType", ("leaveType",), 1),
        Column("reason", ("reason",), 2),
        Column("email", _IDENTITY_NAMES, 3),
        Column("name", ("name",), 4),
        Column("employeeNo", ("employeeNo",), 5),
        Column("supervisorEmail", ("supervisorEmail",), 6),
        Column("province", ("province",), 7),
        Column("channel", ("channel",), 8),
        Column("district", ("district",), 9),
        Column("group", ("group",)),
    ),
)

LEAVE_DELETES_SCHEMA = TableSchema(
    name="leave_deletes",
    columns=(
        Column("dtISO", ("dtISO",)),
        Column("email", _IDENTITY_NAMES),
        Column("employeeNo", ("employeeNo",)),
    ),
)

# Positional order of rows appended to the leave table.
LEAVE_ROW_ORDER = (
    "dtISO",
    "leaveType",
    "reason",
    "email",
    "name",
    "employeeNo",
    "supervisorEmail",
    "province",
    "channel",
    "district",
)


def _iso_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _leave_from_row(columns: ColumnMap, row: Sequence[Any]) -> dict[str, Any]:
    raw_dt = columns.value(row, "dtISO")
    return {
        "date": to_date_part(raw_dt),
        "dtISO": clean_text(raw_dt),
        "leaveType": columns.text(row, "leaveType"),
        "reason": columns.text(row, "reason"),
        "email": columns.text(row, "email"),
        "name": columns.text(row, "name"),
        "employeeNo": columns.text(row, "employeeNo"),
        "supervisorEmail": columns.text(row, "supervisorEmail"),
        "province": columns.text(row, "province"),
        "channel": columns.text(row, "channel"),
        "district": columns.text(row, "district"),
        "group": columns.text(row, "group"),
    }


def _deleted_keys(store: TableStore, config: Settings) -> set[str]:
    if not config.has_table("leave_deletes"):
        return set()
    table = config.table_name("leave_deletes")
    try:
        headers = store.get_headers(table)
        rows = store.get_rows(table)
    except GraphError as exc:
        if exc.is_not_found:
            logger.info("Leave deletes table %s not found; no soft deletes applied", table)
            return set()
        raise

    columns = LEAVE_DELETES_SCHEMA.resolve(headers, table=table)
    deleted: set[str] = set()
    for row in rows:
        dt = columns.text(row, "dtISO")
        if not dt:
            continue
        employee_no = columns.text(row, "employeeNo").lower()
        identity = columns.text(row, "email").lower()
        if employee_no:
            deleted.add(f"emp#{employee_no}|{dt}")
        if identity:
            deleted.add(f"usr#{identity}|{dt}")
    return deleted


def _is_deleted(item: dict[str, Any], deleted: set[str]) -> bool:
    dt = item["dtISO"]
    if not dt:
        return False
    employee_no = item["employeeNo"].lower()
    identity = item["email"].lower()
    if employee_no and f"emp#{employee_no}|{dt}" in deleted:
        return True
    return bool(identity) and f"usr#{identity}|{dt}" in deleted


def list_leaves(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    email: str | None = None,
    employee_no: str | None = None,
    config: Settings = settings,
) -> list[dict[str, Any]]:
    from_date = parse_date_param(from_, field_name="from")
    to_date = parse_date_param(to, field_name="to")

    table = config.table_name("leave")
    columns = LEAVE_SCHEMA.resolve(store.get_headers(table), table=table)
    items = [_leave_from_row(columns, row) for row in store.get_rows(table)]

    deleted = _deleted_keys(store, config)
    if deleted:
        items = [item for item in items if not _is_deleted(item, deleted)]

    email_q = clean_text(email).lower()
    employee_q = clean_text(employee_no).lower()
    if employee_q:
        items = [item for item in items if item["employeeNo"].lower() == employee_q]
    if email_q:
        items = [item for item in items if item["email"].lower() == email_q]
    if from_date:
        items = [item for item in items if item["date"] and item["date"] >= from_date]
    if to_date:
        items = [item for item in items if item["date"] and item["date"] <= to_date]

    items.sort(key=lambda item: item["date"])
    return items


def add_leave(
    store: TableStore,
    *,
    dt: str,
    leave_type: str,
    reason: str = "",
    identity: dict[str, Any] | None = None,
    config: Settings = settings,
) -> None:
    parsed = parse_timestamp(dt)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="dt must be an ISO date/time")
    if not clean_text(leave_type):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing leave type")

    person = identity or {}
    values = {
        "dtISO": parsed.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        "leaveType": clean_text(leave_type),
        "reason": clean_text(reason),
    }
    for field_name in LEAVE_ROW_ORDER[3:]:
        values[field_name] = clean_text(person.get(field_name))
    store.append_values(config.table_name("leave"), [values[key] for key in LEAVE_ROW_ORDER])


def add_leave_delete(
    store: TableStore,
    *,
    dt_iso: str,
    employee_no: str | None = None,
    email: str | None = None,
    username: str | None = None,
    by: str = "",
    config: Settings = settings,
) -> WriteResult:
    if not clean_text(dt_iso):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing dt")
    if not config.has_table("leave_deletes"):
        raise ConfigurationError("GRAPH_TBL_LEAVE_DELETES is not set")

    table = config.table_name("leave_deletes")
    headers = store.get_headers(table)
    identity_column = pick_header(headers, _IDENTITY_NAMES) or "email"
    values: dict[str, Any] = {
        "dtISO": clean_text(dt_iso),
        "employeeNo": clean_text(employee_no),
        identity_column: clean_text(username) or clean_text(email),
        "deletedAt": _iso_now(),
        "deletedBy": clean_text(by),
    }
    return store.append_row(table, values)

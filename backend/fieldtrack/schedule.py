from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from fastapi import HTTPException, status

from .config import Settings, settings
from .store import Column, TableSchema, TableStore, WriteResult, clean_text, header_index, pick_header
from .timeparse import parse_date_any, parse_date_param

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKLY_ID_COLUMNS = ("employeeNo", "username", "email")

HOLIDAYS_SCHEMA = TableSchema(
    name="holidays",
    columns=(
        Column("date", ("dateISO",), 0),
        Column("name", ("name",), 1),
        Column("type", ("type",)),
        Column("description", ("description",)),
    ),
)

DAYOFFS_SCHEMA = TableSchema(
    name="dayoffs",
    columns=(
        Column("employeeNo", ("employeeNo",)),
        Column("email", ("username", "email")),
        Column("date", ("dateISO",)),
        Column("leaveType", ("leaveType",)),
        Column("remark", ("remark",)),
    ),
)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _bool_cell(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() == "true"


def list_holidays(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    config: Settings = settings,
) -> list[dict[str, str]]:
    from_text = parse_date_param(from_, field_name="from")
    to_text = parse_date_param(to, field_name="to")
    from_date = date.fromisoformat(from_text) if from_text else None
    to_date = date.fromisoformat(to_text) if to_text else None

    table = config.table_name("holidays")
    columns = HOLIDAYS_SCHEMA.resolve(store.get_headers(table), table=table)

    parsed_items: list[tuple[date | None, dict[str, str]]] = []
    for row in store.get_rows(table):
        raw_date = columns.value(row, "date")
        parsed = parse_date_any(raw_date)
        item = {
            "date": parsed.isoformat() if parsed else clean_text(raw_date),
            "name": columns.text(row, "name"),
            "type": columns.text(row, "type"),
            "description": columns.text(row, "description"),
        }
        parsed_items.append((parsed, item))

    # Unparsable dates cannot satisfy a range filter.
    if from_date:
        parsed_items = [entry for entry in parsed_items if entry[0] is not None and entry[0] >= from_date]
    if to_date:
        parsed_items = [entry for entry in parsed_items if entry[0] is not None and entry[0] <= to_date]

    parsed_items.sort(key=lambda entry: entry[0] or date.min)
    return [item for _, item in parsed_items]


def add_day_off(
    store: TableStore,
    *,
    date_iso: str,
    leave_type: str,
    employee_no: str | None = None,
    email: str | None = None,
    username: str | None = None,
    remark: str = "",
    by: str = "",
    config: Settings = settings,
) -> WriteResult:
    identity = clean_text(username) or clean_text(email)
    if not (clean_text(employee_no) or identity) or not clean_text(date_iso) or not clean_text(leave_type):
        raise _bad_request("Missing employeeNo/username or dateISO/leaveType")

    table = config.table_name("dayoffs")
    headers = store.get_headers(table)
    identity_column = pick_header(headers, ("username", "email")) or "email"
    return store.append_row(
        table,
        {
            "employeeNo": clean_text(employee_no),
            identity_column: identity,
            "dateISO": clean_text(date_iso),
            "leaveType": clean_text(leave_type),
            "remark": clean_text(remark),
            "by": clean_text(by),
            "createdAt": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        },
    )


def list_day_offs(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    email: str | None = None,
    employee_no: str | None = None,
    config: Settings = settings,
) -> list[dict[str, str]]:
    from_text = parse_date_param(from_, field_name="from")
    to_text = parse_date_param(to, field_name="to")

    table = config.table_name("dayoffs")
    columns = DAYOFFS_SCHEMA.resolve(store.get_headers(table), table=table)
    items = [
        {
            "employeeNo": columns.text(row, "employeeNo"),
            "email": columns.text(row, "email"),
            "date": columns.text(row, "date"),
            "leaveType": columns.text(row, "leaveType"),
            "remark": columns.text(row, "remark"),
        }
        for row in store.get_rows(table)
    ]

    employee_q = clean_text(employee_no).lower()
    email_q = clean_text(email).lower()
    if employee_q:
        items = [item for item in items if item["employeeNo"].lower() == employee_q]
    if email_q:
        items = [item for item in items if item["email"].lower() == email_q]
    if from_text:
        items = [item for item in items if item["date"][:10] >= from_text]
    if to_text:
        items = [item for item in items if item["date"] and item["date"][:10] <= to_text]

    items.sort(key=lambda item: item["date"])
    return items


def set_weekly_off(
    store: TableStore,
    identity: str,
    days: dict[str, bool],
    *,
    effective_from: str | None = None,
    config: Settings = settings,
) -> WriteResult:
    identity_text = clean_text(identity)
    if not identity_text:
        raise _bad_request("Missing employeeNo or username")
    effective = parse_date_param(effective_from, field_name="effectiveFrom")

    table = config.table_name("weekly_off")
    headers = store.get_headers(table)
    values: dict[str, Any] = {}
    # The table may key rows by any of the identity columns; fill each one present.
    for column in _WEEKLY_ID_COLUMNS:
        if header_index(headers, (column,)) is not None:
            values[column] = identity_text
    if not values:
        values["employeeNo"] = identity_text
    for day in WEEKDAYS:
        values[f"{day}Off"] = "TRUE" if days.get(day) else "FALSE"
    values["effectiveFrom"] = effective or datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return store.append_row(table, values)


def get_weekly_off(store: TableStore, identity: str, *, config: Settings = settings) -> dict[str, Any] | None:
    identity_text = clean_text(identity)
    if not identity_text:
        raise _bad_request("Missing employeeNo or username")

    table = config.table_name("weekly_off")
    headers = store.get_headers(table)
    key_index = header_index(headers, _WEEKLY_ID_COLUMNS)
    if key_index is None:
        return None

    target = identity_text.lower()
    matches = [
        row for row in store.get_rows(table) if key_index < len(row) and clean_text(row[key_index]).lower() == target
    ]
    if not matches:
        return None

    # Rows are appended over time; the last one is the current configuration.
    latest = matches[-1]

    def cell(name: str) -> Any:
        index = header_index(headers, (name,))
        if index is None or index >= len(latest):
            return None
        return latest[index]

    config_row: dict[str, Any] = {"id": identity_text}
    for day in WEEKDAYS:
        config_row[day] = _bool_cell(cell(f"{day}Off"))
    config_row["effectiveFrom"] = clean_text(cell("effectiveFrom"))
    return config_row

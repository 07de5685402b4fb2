from __future__ import annotations

from typing import Any, Mapping, Sequence

import pytest

from fieldtrack.config import Settings
from fieldtrack.errors import GraphError
from fieldtrack.store import WriteResult, map_named_values

CHECKIN_HEADERS = [
    "checkinISO",
    "locationName",
    "gps",
    "checkinAddress",
    "jobTitle",
    "jobDetail",
    "photoUrl",
    "email",
    "name",
    "employeeNo",
    "supervisorEmail",
    "province",
    "channel",
    "district",
    "checkinLat",
    "checkinLon",
]
CHECKOUT_HEADERS = [
    "checkoutISO",
    "locationName",
    "checkoutGps",
    "checkoutAddress",
    "checkoutPhotoUrl",
    "email",
    "name",
    "employeeNo",
    "supervisorEmail",
    "province",
    "channel",
    "district",
    "problemDetail",
    "jobRemark",
    "checkoutLat",
    "checkoutLon",
]
LEAVE_HEADERS = [
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
]
LEAVE_DELETE_HEADERS = ["dtISO", "employeeNo", "email", "deletedAt", "deletedBy"]
USERS_HEADERS = ["email", "username", "name", "employeeNo", "district", "group", "role"]


class FakeStore:
    """In-memory table store with the same contract as ``TableStore``."""

    def __init__(self, tables: Mapping[str, tuple[Sequence[str], Sequence[Sequence[Any]]]] | None = None) -> None:
        self.tables: dict[str, tuple[list[str], list[list[Any]]]] = {}
        for name, (headers, rows) in (tables or {}).items():
            self.add_table(name, headers, rows)
        self.client: Any = None

    def add_table(self, name: str, headers: Sequence[str], rows: Sequence[Sequence[Any]] = ()) -> None:
        self.tables[name] = (list(headers), [list(row) for row in rows])

    def add_named_row(self, name: str, values: Mapping[str, Any]) -> None:
        headers, rows = self.tables[name]
        row, _ = map_named_values(name, headers, values)
        rows.append(row)

    def _table(self, table: str) -> tuple[list[str], list[list[Any]]]:
        if table not in self.tables:
            raise GraphError(f"Read table failed 404: {table} not found", status_code=404)
        return self.tables[table]

    def get_headers(self, table: str) -> list[str]:
        return list(self._table(table)[0])

    def get_rows(self, table: str) -> list[list[Any]]:
        return [list(row) for row in self._table(table)[1]]

    def append_values(self, table: str, values: Sequence[Any]) -> None:
        self._table(table)[1].append(list(values))

    def append_row(self, table: str, values: Mapping[str, Any]) -> WriteResult:
        headers, rows = self._table(table)
        row, result = map_named_values(table, headers, values)
        rows.append(row)
        return result

    def update_row(self, table: str, index: int, values: Mapping[str, Any]) -> WriteResult:
        headers, rows = self._table(table)
        row, result = map_named_values(table, headers, values, base_row=rows[index])
        rows[index] = row
        return result


@pytest.fixture
def config() -> Settings:
    return Settings(
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        site_id="site-1",
        workbook_path="Shared Documents/PA.xlsx",
        max_distance_km=0.5,
        tables={
            "checkin": "CheckIn",
            "checkout": "CheckOut",
            "leave": "Leave",
            "users": "Users",
            "holidays": "Holidays",
            "weekly_off": "WeeklyOff",
            "dayoffs": "DayOffs",
            "leave_deletes": "LeaveDeletes",
        },
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(
        {
            "CheckIn": (CHECKIN_HEADERS, []),
            "CheckOut": (CHECKOUT_HEADERS, []),
            "Leave": (LEAVE_HEADERS, []),
            "LeaveDeletes": (LEAVE_DELETE_HEADERS, []),
            "Users": (USERS_HEADERS, []),
        }
    )

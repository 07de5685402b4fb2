from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, Sequence

from .cache import TTLCache
from .graph import GraphClient

logger = logging.getLogger(__name__)

_FALLBACK_WARNED: set[tuple[str, str]] = set()
_FALLBACK_WARNED_LOCK = Lock()


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def header_index(headers: Sequence[str], candidates: Sequence[str]) -> int | None:
    lowered = [str(header).strip().lower() for header in headers]
    for candidate in candidates:
        try:
            return lowered.index(candidate.lower())
        except ValueError:
            continue
    return None


def pick_header(headers: Sequence[str], candidates: Sequence[str]) -> str | None:
    index = header_index(headers, candidates)
    return None if index is None else str(headers[index])


@dataclass(frozen=True)
class Column:
    key: str
    names: tuple[str, ...]
    fallback: int | None = None


@dataclass(frozen=True)
class ColumnMap:
    table: str
    indices: dict[str, int | None]
    fallbacks_used: tuple[str, ...] = ()

    def value(self, row: Sequence[Any], key: str) -> Any:
        index = self.indices.get(key)
        if index is None or index < 0 or index >= len(row):
            return None
        return row[index]

    def text(self, row: Sequence[Any], key: str) -> str:
        return clean_text(self.value(row, key))

    def has(self, key: str) -> bool:
        return self.indices.get(key) is not None


@dataclass(frozen=True)
class TableSchema:
    """Recognised headers for a table, each with an optional legacy position.

    Header names are matched case-insensitively and tried in order. When none
    matches, the declared fallback position is used (legacy tables without
    explicit headers) and a configuration warning is logged once.
    """

    name: str
    columns: tuple[Column, ...]

    def resolve(self, headers: Sequence[str], *, table: str = "") -> ColumnMap:
        indices: dict[str, int | None] = {}
        fallbacks: list[str] = []
        for column in self.columns:
            found = header_index(headers, column.names)
            if found is None and column.fallback is not None:
                found = column.fallback
                fallbacks.append(column.key)
            indices[column.key] = found

        if fallbacks:
            _warn_fallbacks_once(table or self.name, fallbacks)
        return ColumnMap(table=table or self.name, indices=indices, fallbacks_used=tuple(fallbacks))


def _warn_fallbacks_once(table: str, keys: Sequence[str]) -> None:
    fresh: list[str] = []
    with _FALLBACK_WARNED_LOCK:
        for key in keys:
            marker = (table, key)
            if marker in _FALLBACK_WARNED:
                continue
            _FALLBACK_WARNED.add(marker)
            fresh.append(key)
    if fresh:
        logger.warning(
            "Table %s is missing headers for %s; using legacy column positions",
            table,
            ", ".join(fresh),
        )


@dataclass
class WriteResult:
    table: str
    written: dict[str, Any] = field(default_factory=dict)
    dropped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.dropped

    def as_dict(self) -> dict[str, Any]:
        return {"table": self.table, "written": sorted(self.written), "dropped": list(self.dropped)}


def _cell(value: Any) -> Any:
    return "" if value is None else value


def map_named_values(
    table: str,
    headers: Sequence[str],
    values: Mapping[str, Any],
    *,
    base_row: Sequence[Any] | None = None,
) -> tuple[list[Any], WriteResult]:
    lowered = {str(header).strip().lower(): index for index, header in enumerate(headers)}
    row: list[Any] = list(base_row) if base_row is not None else [""] * len(headers)
    if len(row) < len(headers):
        row.extend([""] * (len(headers) - len(row)))

    result = WriteResult(table=table)
    for name, value in values.items():
        index = lowered.get(str(name).strip().lower())
        if index is None:
            result.dropped.append(str(name))
            continue
        row[index] = _cell(value)
        result.written[headers[index]] = row[index]

    if result.dropped:
        logger.warning(
            "Table %s has no column for %s; values were not written",
            table,
            ", ".join(result.dropped),
        )
    return row, result


class TableStore:
    def __init__(self, client: GraphClient, *, header_cache: TTLCache | None = None) -> None:
        self.client = client
        ttl = client.config.header_cache_ttl_seconds
        self.header_cache = header_cache if header_cache is not None else TTLCache(ttl)

    def get_headers(self, table: str) -> list[str]:
        cached = self.header_cache.get(table)
        if cached is not None:
            return list(cached)
        headers = [clean_text(value) for value in self.client.table_header_values(table)]
        self.header_cache.set(table, tuple(headers))
        return headers

    def get_rows(self, table: str) -> list[list[Any]]:
        values = self.client.table_range_values(table)
        return values[1:] if values else []

    def append_values(self, table: str, values: Sequence[Any]) -> None:
        self.client.add_table_rows(table, [[_cell(value) for value in values]])

    def append_row(self, table: str, values: Mapping[str, Any]) -> WriteResult:
        headers = self.get_headers(table)
        row, result = map_named_values(table, headers, values)
        self.client.add_table_rows(table, [row])
        return result

    def update_row(self, table: str, index: int, values: Mapping[str, Any]) -> WriteResult:
        headers = self.get_headers(table)
        current = self.client.table_row_at(table, index)
        row, result = map_named_values(table, headers, values, base_row=current)
        if result.written:
            self.client.update_table_row_at(table, index, row)
        return result

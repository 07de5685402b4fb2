from __future__ import annotations

from typing import Any, Iterable

from .activities import STATUS_COMPLETED, STATUS_INCOMPLETE, list_activities
from .config import Settings, settings
from .directory import UserDirectory
from .store import TableStore, clean_text

SUMMARY_FIELDS = ("name", "employeeNo", "district", "group")
UNKNOWN_GROUP = "unknown"


def summary_key(record: dict[str, Any]) -> str:
    for field_name in ("email", "employeeNo", "name"):
        value = clean_text(record.get(field_name)).lower()
        if value:
            return value
    return UNKNOWN_GROUP


def summarize_activities(
    rows: Iterable[dict[str, Any]],
    directory: UserDirectory | None = None,
) -> list[dict[str, Any]]:
    """Count visits per person.

    Every record lands in exactly one group, so ``completed + incomplete +
    ongoing == total`` holds per row. Statuses other than completed or
    incomplete count as ongoing.
    """
    groups: dict[str, dict[str, Any]] = {}
    for row in rows:
        key = summary_key(row)
        entry = groups.get(key)
        if entry is None:
            entry = {
                "email": "",
                "name": "",
                "employeeNo": "",
                "district": "",
                "group": "",
                "total": 0,
                "completed": 0,
                "incomplete": 0,
                "ongoing": 0,
            }
            groups[key] = entry

        for field_name in ("email", *SUMMARY_FIELDS):
            if not entry[field_name]:
                entry[field_name] = clean_text(row.get(field_name))

        entry["total"] += 1
        row_status = clean_text(row.get("status")).lower()
        if row_status == STATUS_COMPLETED:
            entry["completed"] += 1
        elif row_status == STATUS_INCOMPLETE:
            entry["incomplete"] += 1
        else:
            entry["ongoing"] += 1

    summary: list[dict[str, Any]] = []
    for entry in groups.values():
        if directory is not None:
            directory.backfill(entry, SUMMARY_FIELDS)
        entry.pop("email", None)
        summary.append(entry)

    summary.sort(key=lambda item: (item["name"].casefold(), item["employeeNo"]))
    return summary


def summarize_report(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    name: str | None = None,
    district: str | None = None,
    group: str | None = None,
    directory: UserDirectory | None = None,
    config: Settings = settings,
) -> list[dict[str, Any]]:
    rows = list_activities(
        store,
        from_=from_,
        to=to,
        name=name,
        district=district,
        group=group,
        directory=directory,
        config=config,
    )
    return summarize_activities(rows, directory)


def summary_totals(summary: Iterable[dict[str, Any]]) -> dict[str, int]:
    totals = {"people": 0, "total": 0, "completed": 0, "incomplete": 0, "ongoing": 0}
    for item in summary:
        totals["people"] += 1
        for field_name in ("total", "completed", "incomplete", "ongoing"):
            totals[field_name] += int(item.get(field_name) or 0)
    return totals

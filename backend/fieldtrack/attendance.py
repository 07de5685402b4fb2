from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .activities import list_activities
from .config import Settings, settings
from .directory import UserDirectory
from .leaves import list_leaves
from .store import TableStore, clean_text
from .timeparse import minutes_of_day, minutes_to_hhmm, parse_date_param

logger = logging.getLogger(__name__)

REMARK_NO_CHECKOUT = "No check-out"
REMARK_CHECKOUT_WITHOUT_CHECKIN = "Checkout without check-in"
LEAVE_SEPARATOR = "; "

_IDENTITY_FIELDS = ("name", "email", "employeeNo", "district", "group")
_LAST_DETAIL_FIELDS = (
    ("lastLocation", "checkoutLocation"),
    ("lastImage", "imageOut"),
    ("lastGps", "checkoutGps"),
    ("lastAddress", "checkoutAddress"),
)


def identity_key(record: dict[str, Any]) -> str:
    for field_name in ("email", "employeeNo", "name"):
        value = clean_text(record.get(field_name)).lower()
        if value:
            return value
    return "unknown"


def blank_attendance_row(date_value: str) -> dict[str, Any]:
    return {
        "date": date_value,
        "name": "",
        "email": "",
        "employeeNo": "",
        "district": "",
        "group": "",
        "firstCheckin": "",
        "firstLocation": "",
        "firstImage": "",
        "firstGps": "",
        "firstAddress": "",
        "lastCheckout": "",
        "lastLocation": "",
        "lastImage": "",
        "lastGps": "",
        "lastAddress": "",
        "locationCount": 0,
        "visitCount": 0,
        "leave": "",
        "leaveReason": "",
        "remark": "",
    }


@dataclass
class _Day:
    row: dict[str, Any]
    first_minutes: float = math.inf
    last_minutes: int = -1
    locations: set[str] = field(default_factory=set)
    leave_types: list[str] = field(default_factory=list)
    leave_reasons: list[str] = field(default_factory=list)

    def take_identity(self, record: dict[str, Any]) -> None:
        for field_name in _IDENTITY_FIELDS:
            if not self.row[field_name]:
                self.row[field_name] = clean_text(record.get(field_name))

    def add_visit(self, record: dict[str, Any]) -> None:
        self.take_identity(record)
        self.row["visitCount"] += 1
        location = clean_text(record.get("location")).lower()
        if location:
            self.locations.add(location)

        checkin = minutes_of_day(record.get("checkin"))
        checkin_minutes = math.inf if checkin is None else checkin
        if checkin_minutes < self.first_minutes:
            self.first_minutes = checkin_minutes
            self.row.update(
                {
                    "firstCheckin": minutes_to_hhmm(checkin),
                    "firstLocation": clean_text(record.get("checkinLocation") or record.get("location")),
                    "firstImage": clean_text(record.get("imageIn")),
                    "firstGps": clean_text(record.get("checkinGps")),
                    "firstAddress": clean_text(record.get("checkinAddress")),
                }
            )

        checkout = minutes_of_day(record.get("checkout"))
        checkout_minutes = -1 if checkout is None else checkout
        if checkout_minutes > self.last_minutes:
            self.last_minutes = checkout_minutes
            self.row["lastCheckout"] = minutes_to_hhmm(checkout)
            # The latest checkout wins per field; blanks keep what earlier checkouts left.
            for target, source in _LAST_DETAIL_FIELDS:
                value = clean_text(record.get(source))
                if target == "lastLocation" and not value:
                    value = clean_text(record.get("location"))
                if value:
                    self.row[target] = value
            return

        # Not the latest checkout; only fill what is still blank.
        if not record.get("checkout"):
            return
        for target, source in _LAST_DETAIL_FIELDS:
            if not self.row[target]:
                self.row[target] = clean_text(record.get(source))

    def add_leave(self, record: dict[str, Any]) -> None:
        self.take_identity(record)
        leave_type = clean_text(record.get("leaveType"))
        reason = clean_text(record.get("reason"))
        if leave_type:
            self.leave_types.append(leave_type)
        if reason:
            self.leave_reasons.append(reason)

    def finish(self) -> dict[str, Any]:
        row = self.row
        row["locationCount"] = len(self.locations)
        row["leave"] = LEAVE_SEPARATOR.join(self.leave_types)
        row["leaveReason"] = LEAVE_SEPARATOR.join(self.leave_reasons)
        if row["firstCheckin"] and not row["lastCheckout"]:
            row["remark"] = REMARK_NO_CHECKOUT
        elif row["lastCheckout"] and not row["firstCheckin"]:
            row["remark"] = REMARK_CHECKOUT_WITHOUT_CHECKIN
        else:
            row["remark"] = ""
        return row


def build_time_attendance(
    activities: Iterable[dict[str, Any]],
    leaves: Iterable[dict[str, Any]] = (),
    *,
    name: str | None = None,
    email: str | None = None,
    district: str | None = None,
    from_: str | None = None,
    to: str | None = None,
) -> list[dict[str, Any]]:
    """Fold visits and leave records into one row per (date, person).

    The earliest parsable check-in and the latest parsable checkout of the
    day win; unparsable times never do. Leave labels landing on the same day
    are joined with ``"; "``.
    """
    days: dict[tuple[str, str], _Day] = {}

    def day_for(record: dict[str, Any]) -> _Day | None:
        date_value = clean_text(record.get("date"))
        if not date_value:
            return None
        key = (date_value, identity_key(record))
        day = days.get(key)
        if day is None:
            day = _Day(row=blank_attendance_row(date_value))
            days[key] = day
        return day

    skipped = 0
    for record in activities:
        day = day_for(record)
        if day is None:
            skipped += 1
            continue
        day.add_visit(record)

    for record in leaves:
        day = day_for(record)
        if day is None:
            skipped += 1
            continue
        day.add_leave(record)

    if skipped:
        logger.warning("Skipped %s attendance records without a date", skipped)

    rows = [day.finish() for day in days.values()]
    return sort_attendance(
        filter_attendance(rows, name=name, email=email, district=district, from_=from_, to=to)
    )


def filter_attendance(
    rows: Sequence[dict[str, Any]],
    *,
    name: str | None = None,
    email: str | None = None,
    district: str | None = None,
    from_: str | None = None,
    to: str | None = None,
) -> list[dict[str, Any]]:
    name_q = clean_text(name).lower()
    email_q = clean_text(email).lower()
    district_q = clean_text(district).lower()

    result: list[dict[str, Any]] = []
    for row in rows:
        if from_ and row["date"] < from_:
            continue
        if to and row["date"] > to:
            continue
        if name_q and name_q not in row["name"].lower() and name_q not in row["email"].lower():
            continue
        if email_q and row["email"].lower() != email_q:
            continue
        if district_q and district_q not in row["district"].lower():
            continue
        result.append(row)
    return result


def sort_attendance(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    rows.sort(key=lambda row: (row["date"], row["name"].casefold(), row["employeeNo"]))
    return rows


def list_time_attendance(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    name: str | None = None,
    email: str | None = None,
    district: str | None = None,
    directory: UserDirectory | None = None,
    config: Settings = settings,
) -> list[dict[str, Any]]:
    from_date = parse_date_param(from_, field_name="from")
    to_date = parse_date_param(to, field_name="to")

    activities = list_activities(store, from_=from_date, to=to_date, directory=directory, config=config)
    leaves: list[dict[str, Any]] = []
    if config.has_table("leave"):
        leaves = list_leaves(store, from_=from_date, to=to_date, config=config)
        if directory is not None:
            for leave in leaves:
                directory.backfill(leave)

    return build_time_attendance(
        activities,
        leaves,
        name=name,
        email=email,
        district=district,
        from_=from_date,
        to=to_date,
    )

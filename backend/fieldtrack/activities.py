from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from fastapi import HTTPException, status

from .config import Settings, settings
from .directory import UserDirectory
from .geo import Coordinate, haversine_km, normalize_lat_lon, parse_coordinate
from .store import Column, ColumnMap, TableSchema, TableStore, WriteResult, clean_text, pick_header
from .timeparse import build_iso, parse_date_param, parse_timestamp, to_date_part, to_time_part

logger = logging.getLogger(__name__)

STATUS_ONGOING = "ongoing"
STATUS_INCOMPLETE = "incomplete"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_ONGOING, STATUS_INCOMPLETE, STATUS_COMPLETED)

ISSUE_INVALID_CHECKIN_GPS = "invalid_checkin_gps"
ISSUE_INVALID_CHECKOUT_GPS = "invalid_checkout_gps"
ISSUE_DISTANCE_OVER_THRESHOLD = "distance_over_threshold"

_IDENTITY_NAMES = ("username", "email")

# Legacy positions follow the column order the tables were first created with.
CHECKIN_SCHEMA = TableSchema(
    name="checkin",
    columns=(
        Column("iso", ("checkinISO",), 0),
        Column("location", ("locationName",), 1),
        Column("gps", ("gps", "checkinGps"), 2),
        Column("address", ("checkinAddress",)),
        Column("lat", ("checkinLat",)),
        Column("lon", ("checkinLon",)),
        Column("title", ("jobTitle",), 3),
        Column("detail", ("jobDetail",), 4),
        Column("photo", ("photoUrl",), 5),
        Column("email", _IDENTITY_NAMES, 6),
        Column("name", ("name",), 7),
        Column("employeeNo", ("employeeNo",), 8),
        Column("district", ("district",), 12),
        Column("group", ("group",)),
    ),
)

CHECKOUT_SCHEMA = TableSchema(
    name="checkout",
    columns=(
        Column("iso", ("checkoutISO",), 0),
        Column("location", ("locationName",), 1),
        Column("gps", ("checkoutGps",), 2),
        Column("address", ("checkoutAddress",)),
        Column("lat", ("checkoutLat",)),
        Column("lon", ("checkoutLon",)),
        Column("photo", ("checkoutPhotoUrl",), 3),
        Column("email", _IDENTITY_NAMES, 4),
        Column("name", ("name",), 5),
        Column("employeeNo", ("employeeNo",), 6),
        Column("district", ("district",), 10),
        Column("group", ("group",)),
        Column("problemDetail", ("problemDetail", "problem")),
        Column("remark", ("jobRemark", "remark")),
    ),
)


def blank_activity() -> dict[str, Any]:
    return {
        "date": "",
        "checkin": "",
        "checkout": "",
        "location": "",
        "checkinLocation": "",
        "checkoutLocation": "",
        "detail": "",
        "problemDetail": "",
        "remark": "",
        "status": STATUS_ONGOING,
        "name": "",
        "email": "",
        "employeeNo": "",
        "district": "",
        "group": "",
        "imageIn": "",
        "imageOut": "",
        "checkinGps": "",
        "checkoutGps": "",
        "checkinAddress": "",
        "checkoutAddress": "",
        "checkinLat": None,
        "checkinLon": None,
        "checkoutLat": None,
        "checkoutLon": None,
        "distanceKm": None,
        "issues": [],
        "checkinRowIndex": None,
        "checkoutRowIndex": None,
    }


def join_key(email: Any, date_value: str, location: Any) -> tuple[str, str, str]:
    return clean_text(email).lower(), date_value, clean_text(location).lower()


def _row_coordinate(columns: ColumnMap, row: Sequence[Any], gps_text: str) -> Coordinate | None:
    if columns.has("lat") and columns.has("lon"):
        parsed = normalize_lat_lon(columns.value(row, "lat"), columns.value(row, "lon"))
        if parsed is not None:
            return parsed
    return parse_coordinate(gps_text)


def _apply_checkin(record: dict[str, Any], columns: ColumnMap, row: Sequence[Any], index: int) -> None:
    iso = columns.value(row, "iso")
    location = columns.text(row, "location")
    gps_text = columns.text(row, "gps")
    coordinate = _row_coordinate(columns, row, gps_text)

    record.update(
        {
            "date": to_date_part(iso),
            "checkin": to_time_part(iso),
            "location": location,
            "checkinLocation": location,
            "detail": columns.text(row, "detail"),
            "name": columns.text(row, "name"),
            "email": columns.text(row, "email"),
            "employeeNo": columns.text(row, "employeeNo"),
            "district": columns.text(row, "district"),
            "group": columns.text(row, "group"),
            "imageIn": columns.text(row, "photo"),
            "checkinGps": gps_text,
            "checkinAddress": columns.text(row, "address"),
            "checkinLat": coordinate[0] if coordinate else None,
            "checkinLon": coordinate[1] if coordinate else None,
            "checkinRowIndex": index,
        }
    )
    if coordinate is None and gps_text:
        record["issues"].append(ISSUE_INVALID_CHECKIN_GPS)
        logger.warning("Invalid check-in GPS for %s on %s: %r", record["email"], record["date"], gps_text)


def _apply_checkout(record: dict[str, Any], columns: ColumnMap, row: Sequence[Any], index: int) -> None:
    iso = columns.value(row, "iso")
    location = columns.text(row, "location")
    gps_text = columns.text(row, "gps")
    coordinate = _row_coordinate(columns, row, gps_text)

    if not record["date"]:
        record["date"] = to_date_part(iso)
    if not record["location"]:
        record["location"] = location
    record["checkout"] = to_time_part(iso)
    record["checkoutLocation"] = location or record["checkoutLocation"]
    record["imageOut"] = columns.text(row, "photo")
    record["checkoutGps"] = gps_text
    record["checkoutAddress"] = columns.text(row, "address")
    record["checkoutLat"] = coordinate[0] if coordinate else None
    record["checkoutLon"] = coordinate[1] if coordinate else None
    record["checkoutRowIndex"] = index
    record["problemDetail"] = columns.text(row, "problemDetail")
    record["remark"] = columns.text(row, "remark")
    for field_name in ("name", "email", "employeeNo", "district", "group"):
        if not record[field_name]:
            record[field_name] = columns.text(row, field_name)

    if coordinate is None and gps_text:
        record["issues"].append(ISSUE_INVALID_CHECKOUT_GPS)
        logger.warning("Invalid check-out GPS for %s on %s: %r", record["email"], record["date"], gps_text)


def _attach_distance(record: dict[str, Any], max_distance_km: float) -> None:
    if None in (record["checkinLat"], record["checkinLon"], record["checkoutLat"], record["checkoutLon"]):
        return
    start = (record["checkinLat"], record["checkinLon"])
    end = (record["checkoutLat"], record["checkoutLon"])
    exact = haversine_km(start, end)
    record["distanceKm"] = round(exact, 3)
    if exact > max_distance_km:
        record["issues"].append(ISSUE_DISTANCE_OVER_THRESHOLD)
        logger.warning(
            "Check-out %.3f km from check-in (limit %.3f km) for %s at %s on %s",
            exact,
            max_distance_km,
            record["email"],
            record["location"],
            record["date"],
        )


def reconcile_activities(
    *,
    checkin_headers: Sequence[str],
    checkin_rows: Sequence[Sequence[Any]],
    checkout_headers: Sequence[str],
    checkout_rows: Sequence[Sequence[Any]],
    max_distance_km: float | None = None,
    checkin_table: str = "checkin",
    checkout_table: str = "checkout",
) -> list[dict[str, Any]]:
    """Join raw check-in and check-out rows into one record per visit.

    Rows are correlated on (email, UTC date, location) after trimming and
    lowercasing. A check-out with no matching check-in is kept as an
    ``incomplete`` record rather than dropped.
    """
    limit = settings.max_distance_km if max_distance_km is None else max_distance_km
    ci_columns = CHECKIN_SCHEMA.resolve(checkin_headers, table=checkin_table)
    co_columns = CHECKOUT_SCHEMA.resolve(checkout_headers, table=checkout_table)

    records: dict[tuple[str, str, str], dict[str, Any]] = {}

    for index, row in enumerate(checkin_rows):
        record = blank_activity()
        _apply_checkin(record, ci_columns, row, index)
        records[join_key(record["email"], record["date"], record["location"])] = record

    for index, row in enumerate(checkout_rows):
        iso = co_columns.value(row, "iso")
        key = join_key(co_columns.text(row, "email"), to_date_part(iso), co_columns.text(row, "location"))
        record = records.get(key)
        if record is None:
            record = blank_activity()
            records[key] = record
        _apply_checkout(record, co_columns, row, index)
        record["status"] = STATUS_COMPLETED if record["checkin"] else STATUS_INCOMPLETE
        _attach_distance(record, limit)

    return list(records.values())


def _contains(value: Any, needle: str) -> bool:
    return needle in clean_text(value).lower()


def filter_activities(
    rows: Sequence[dict[str, Any]],
    *,
    from_: str | None = None,
    to: str | None = None,
    name: str | None = None,
    email: str | None = None,
    employee_no: str | None = None,
    district: str | None = None,
    group: str | None = None,
    location: str | None = None,
    status_value: str | None = None,
) -> list[dict[str, Any]]:
    name_q = clean_text(name).lower()
    email_q = clean_text(email).lower()
    employee_q = clean_text(employee_no).lower()
    district_q = clean_text(district).lower()
    group_q = clean_text(group).lower()
    location_q = clean_text(location).lower()
    status_q = clean_text(status_value).lower()

    result: list[dict[str, Any]] = []
    for row in rows:
        row_date = row.get("date") or ""
        if from_ and row_date < from_:
            continue
        if to and row_date > to:
            continue
        if name_q and not (_contains(row.get("name"), name_q) or _contains(row.get("email"), name_q)):
            continue
        if email_q and clean_text(row.get("email")).lower() != email_q:
            continue
        if employee_q and clean_text(row.get("employeeNo")).lower() != employee_q:
            continue
        if district_q and not _contains(row.get("district"), district_q):
            continue
        if group_q and not _contains(row.get("group"), group_q):
            continue
        if location_q and not _contains(row.get("location"), location_q):
            continue
        if status_q and clean_text(row.get("status")).lower() != status_q:
            continue
        result.append(row)
    return result


def sort_activities(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Stable sorts, least significant key first: date desc, name asc, then
    # check-in time and location to keep the order total.
    rows.sort(key=lambda row: (row.get("checkin") or row.get("checkout") or "", clean_text(row.get("location")).lower()))
    rows.sort(key=lambda row: clean_text(row.get("name")).casefold())
    rows.sort(key=lambda row: row.get("date") or "", reverse=True)
    return rows


def list_activities(
    store: TableStore,
    *,
    from_: str | None = None,
    to: str | None = None,
    name: str | None = None,
    email: str | None = None,
    employee_no: str | None = None,
    district: str | None = None,
    group: str | None = None,
    location: str | None = None,
    status_value: str | None = None,
    directory: UserDirectory | None = None,
    config: Settings = settings,
) -> list[dict[str, Any]]:
    from_date = parse_date_param(from_, field_name="from")
    to_date = parse_date_param(to, field_name="to")
    if status_value and clean_text(status_value).lower() not in STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"status must be one of {', '.join(STATUSES)}",
        )

    checkin_table = config.table_name("checkin")
    checkout_table = config.table_name("checkout")
    # Both tables are read in full before anything is classified; a failure
    # on either aborts the whole listing.
    checkin_headers = store.get_headers(checkin_table)
    checkin_rows = store.get_rows(checkin_table)
    checkout_headers = store.get_headers(checkout_table)
    checkout_rows = store.get_rows(checkout_table)

    rows = reconcile_activities(
        checkin_headers=checkin_headers,
        checkin_rows=checkin_rows,
        checkout_headers=checkout_headers,
        checkout_rows=checkout_rows,
        max_distance_km=config.max_distance_km,
        checkin_table=checkin_table,
        checkout_table=checkout_table,
    )

    if directory is not None:
        for row in rows:
            directory.backfill(row)

    rows = filter_activities(
        rows,
        from_=from_date,
        to=to_date,
        name=name,
        email=email,
        employee_no=employee_no,
        district=district,
        group=group,
        location=location,
        status_value=status_value,
    )
    return sort_activities(rows)


PROFILE_FIELDS = ("name", "employeeNo", "supervisorEmail", "province", "channel", "district")


def _event_iso(value: Any, *, field_name: str) -> str:
    if value is None or not clean_text(value):
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    parsed = parse_timestamp(value)
    if parsed is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field_name} must be an ISO date/time",
        )
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _profile_values(
    payload: dict[str, Any],
    headers: Sequence[str],
    directory: UserDirectory | None,
) -> dict[str, Any]:
    profile = {"email": clean_text(payload.get("email") or payload.get("username"))}
    for field_name in PROFILE_FIELDS:
        profile[field_name] = clean_text(payload.get(field_name))
    if directory is not None:
        directory.backfill(profile)
    if not profile["email"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing email or username")

    identity_column = pick_header(headers, _IDENTITY_NAMES) or "email"
    values = {identity_column: profile.pop("email")}
    values.update(profile)
    return values


def _split_coordinate(gps_text: str) -> tuple[Any, Any]:
    coordinate = parse_coordinate(gps_text)
    if coordinate is None:
        return None, None
    return coordinate


def record_checkin(
    store: TableStore,
    payload: dict[str, Any],
    *,
    directory: UserDirectory | None = None,
    config: Settings = settings,
) -> WriteResult:
    table = config.table_name("checkin")
    headers = store.get_headers(table)
    gps_text = clean_text(payload.get("gps"))
    lat, lon = _split_coordinate(gps_text)
    if gps_text and lat is None:
        logger.warning("Check-in GPS %r could not be parsed; storing text only", gps_text)

    values: dict[str, Any] = {
        "checkinISO": _event_iso(payload.get("checkin"), field_name="checkin"),
        "locationName": clean_text(payload.get("locationName")),
        "gps": gps_text,
        "checkinAddress": clean_text(payload.get("checkinAddress")),
        "jobTitle": clean_text(payload.get("jobTitle")),
        "jobDetail": clean_text(payload.get("jobDetail")),
        "photoUrl": clean_text(payload.get("photoUrl")),
    }
    if not values["locationName"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing locationName")
    values.update(_profile_values(payload, headers, directory))
    if lat is not None:
        values["checkinLat"] = lat
        values["checkinLon"] = lon
    return store.append_row(table, values)


def record_checkout(
    store: TableStore,
    payload: dict[str, Any],
    *,
    directory: UserDirectory | None = None,
    config: Settings = settings,
) -> WriteResult:
    table = config.table_name("checkout")
    headers = store.get_headers(table)
    gps_text = clean_text(payload.get("checkoutGps"))
    lat, lon = _split_coordinate(gps_text)
    if gps_text and lat is None:
        logger.warning("Check-out GPS %r could not be parsed; storing text only", gps_text)

    values: dict[str, Any] = {
        "checkoutISO": _event_iso(payload.get("checkout"), field_name="checkout"),
        "locationName": clean_text(payload.get("locationName")),
        "checkoutGps": gps_text,
        "checkoutAddress": clean_text(payload.get("checkoutAddress")),
        "checkoutPhotoUrl": clean_text(payload.get("checkoutPhotoUrl")),
    }
    if not values["locationName"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing locationName")
    values.update(_profile_values(payload, headers, directory))
    for source, aliases in (("problemDetail", ("problemDetail", "problem")), ("jobRemark", ("jobRemark", "remark"))):
        text = clean_text(payload.get(source))
        if text:
            values[pick_header(headers, aliases) or source] = text
    if lat is not None:
        values["checkoutLat"] = lat
        values["checkoutLon"] = lon
    return store.append_row(table, values)


def update_report_row(
    store: TableStore,
    *,
    date_value: str,
    checkin: str | None = None,
    checkout: str | None = None,
    detail: str | None = None,
    problem_detail: str | None = None,
    remark: str | None = None,
    checkin_row_index: int | None = None,
    checkout_row_index: int | None = None,
    config: Settings = settings,
) -> list[WriteResult]:
    if not clean_text(date_value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing date")

    checkin_payload: dict[str, Any] = {}
    if checkin is not None:
        iso = build_iso(date_value, checkin, field_name="check-in")
        if not iso:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid check-in time")
        checkin_payload["checkinISO"] = iso
    if detail is not None:
        checkin_payload["jobDetail"] = detail

    checkout_payload: dict[str, Any] = {}
    if checkout is not None:
        iso = build_iso(date_value, checkout, field_name="check-out")
        if not iso:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid check-out time")
        checkout_payload["checkoutISO"] = iso
    if problem_detail is not None or remark is not None:
        checkout_headers = store.get_headers(config.table_name("checkout"))
        if problem_detail is not None:
            column = pick_header(checkout_headers, ("problemDetail", "problem")) or "problemDetail"
            checkout_payload[column] = problem_detail
        if remark is not None:
            column = pick_header(checkout_headers, ("jobRemark", "remark")) or "jobRemark"
            checkout_payload[column] = remark

    if checkin_payload and (checkin_row_index is None or checkin_row_index < 0):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing check-in row index")
    if checkout_payload and (checkout_row_index is None or checkout_row_index < 0):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing check-out row index")
    if not checkin_payload and not checkout_payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No changes to apply")

    results: list[WriteResult] = []
    if checkin_payload:
        results.append(store.update_row(config.table_name("checkin"), int(checkin_row_index or 0), checkin_payload))
    if checkout_payload:
        results.append(store.update_row(config.table_name("checkout"), int(checkout_row_index or 0), checkout_payload))
    return results

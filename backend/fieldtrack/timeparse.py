from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status

_EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)
_TIME_RE = re.compile(r"^(\d{1,2})[:.](\d{2})(?:[:.]\d{2}(?:\.\d+)?)?$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _from_excel_serial(value: float) -> datetime | None:
    if not math.isfinite(value):
        return None
    try:
        return _EXCEL_EPOCH + timedelta(days=value)
    except OverflowError:
        return None


def _serial_date(value: float) -> date | None:
    if not math.isfinite(value):
        return None
    parsed = _from_excel_serial(float(round(value)))
    return parsed.date() if parsed else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or Excel serial) into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return _from_excel_serial(float(value))
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                return _from_excel_serial(float(text))
            except ValueError:
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_date_part(value: Any) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%Y-%m-%d") if parsed else ""


def to_time_part(value: Any) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%H:%M") if parsed else ""


def minutes_of_day(value: Any) -> int | None:
    text = str(value or "").strip()
    if not text:
        return None
    match = _TIME_RE.match(text)
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return (hours * 60) + minutes


def minutes_to_hhmm(value: int | None) -> str:
    if value is None or value < 0:
        return ""
    return f"{value // 60:02d}:{value % 60:02d}"


def parse_date_any(value: Any) -> date | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _serial_date(float(value))

    text = str(value).strip()
    if not text:
        return None
    if _ISO_DATE_RE.match(text):
        parsed = parse_timestamp(text)
        if parsed is None:
            try:
                return datetime.strptime(text[:10], "%Y-%m-%d").date()
            except ValueError:
                return None
        return parsed.date()

    match = _SLASH_DATE_RE.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        # dd/mm/yyyy first, then mm/dd/yyyy.
        for day, month in ((first, second), (second, first)):
            try:
                return date(year, month, day)
            except ValueError:
                continue
        return None

    try:
        serial = float(text)
    except ValueError:
        return None
    return _serial_date(serial)


def parse_date_param(value: str | None, *, field_name: str) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").strftime("%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field_name} must be in YYYY-MM-DD format",
        ) from exc


def build_iso(date_value: str | None, time_value: str | None, *, field_name: str) -> str | None:
    if not date_value or time_value is None:
        return None
    text = str(time_value).strip()
    if not text:
        return None
    minutes = minutes_of_day(text)
    try:
        day = datetime.strptime(str(date_value).strip()[:10], "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date must be in YYYY-MM-DD format",
        ) from exc
    if minutes is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field_name} time",
        )
    stamp = day.replace(tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.000Z")

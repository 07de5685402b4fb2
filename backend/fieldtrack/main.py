from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .activities import list_activities, record_checkin, record_checkout, update_report_row
from .attendance import list_time_attendance
from .config import Settings, get_graph_error_payload, settings
from .directory import UserDirectory, list_users, resolve_user_role
from .errors import ConfigurationError, GraphError
from .geo import compute_distance_km, is_out_of_area
from .graph import GraphClient
from .leaves import add_leave, add_leave_delete, list_leaves
from .pdf_exports import generate_summary_pdf, generate_time_attendance_pdf
from .schedule import add_day_off, get_weekly_off, list_day_offs, list_holidays, set_weekly_off
from .schemas import (
    ActivityQuery,
    CheckinRequest,
    CheckoutRequest,
    DayOffRequest,
    DistanceRequest,
    LeaveDeleteRequest,
    LeaveRequest,
    ReportUpdateRequest,
    ResolveRequest,
    SummaryQuery,
    TimeAttendanceQuery,
    UploadPhotoRequest,
    WeeklyOffRequest,
)
from .store import TableStore
from .summary import summarize_report, summary_totals

logger = logging.getLogger(__name__)

_STORE: TableStore | None = None
_STORE_LOCK = Lock()

app = FastAPI(
    title="Field Check-in API",
    description="Check-in/check-out, attendance and leave reports over an Excel workbook",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_config() -> Settings:
    return settings


def get_store() -> TableStore:
    global _STORE
    if _STORE is None:
        with _STORE_LOCK:
            if _STORE is None:
                _STORE = TableStore(GraphClient(settings))
    return _STORE


def _directory(store: TableStore, config: Settings) -> UserDirectory | None:
    if not config.has_table("users"):
        return None
    return UserDirectory.load(store, config)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@app.exception_handler(GraphError)
async def _graph_error_handler(request: Request, exc: GraphError) -> JSONResponse:
    logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(status.HTTP_502_BAD_GATEWAY, str(exc))


@app.exception_handler(ConfigurationError)
async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error(422, f"{location}: {message}" if location else message)


def _pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True, "status": "healthy"}


@app.get("/api/health/graph")
def graph_health(
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> Any:
    checks = store.client.health_check()
    if checks["token"] and checks["workbook"]:
        return {"ok": True, **checks}
    payload = get_graph_error_payload(config)
    payload.update(checks)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=payload)


@app.post("/api/pa/checkin")
def checkin(
    body: CheckinRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    result = record_checkin(
        store,
        body.model_dump(),
        directory=_directory(store, config),
        config=config,
    )
    return {"ok": True, "write": result.as_dict()}


@app.post("/api/pa/checkout")
def checkout(
    body: CheckoutRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    result = record_checkout(
        store,
        body.model_dump(),
        directory=_directory(store, config),
        config=config,
    )
    return {"ok": True, "write": result.as_dict()}


def _activity_rows(body: ActivityQuery, store: TableStore, config: Settings) -> list[dict[str, Any]]:
    return list_activities(
        store,
        from_=body.from_,
        to=body.to,
        name=body.name,
        email=body.email,
        employee_no=body.employeeNo,
        district=body.district,
        group=body.group,
        location=body.location,
        status_value=body.status,
        directory=_directory(store, config),
        config=config,
    )


@app.post("/api/pa/activity")
def activity(
    body: ActivityQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    return {"ok": True, "rows": _activity_rows(body, store, config)}


@app.post("/api/pa/report")
def report(
    body: ActivityQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    rows = _activity_rows(body, store, config)
    flagged = sum(1 for row in rows if row["issues"])
    return {"ok": True, "rows": rows, "count": len(rows), "flagged": flagged}


def _summary(body: SummaryQuery, store: TableStore, config: Settings) -> list[dict[str, Any]]:
    return summarize_report(
        store,
        from_=body.from_,
        to=body.to,
        name=body.name,
        district=body.district,
        group=body.group,
        directory=_directory(store, config),
        config=config,
    )


@app.post("/api/pa/report/summary")
def report_summary(
    body: SummaryQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    summary = _summary(body, store, config)
    return {"ok": True, "summary": summary, "totals": summary_totals(summary)}


@app.post("/api/pa/report/summary/pdf")
def report_summary_pdf(
    body: SummaryQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> Response:
    summary = _summary(body, store, config)
    report_payload = body.model_dump(by_alias=True)
    report_payload["summary"] = summary
    return _pdf_response(generate_summary_pdf(report_payload), "visit-summary.pdf")


@app.patch("/api/pa/report/update")
def report_update(
    body: ReportUpdateRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    results = update_report_row(
        store,
        date_value=body.date,
        checkin=body.checkin,
        checkout=body.checkout,
        detail=body.detail,
        problem_detail=body.problemDetail if body.problemDetail is not None else body.problem,
        remark=body.jobRemark if body.jobRemark is not None else body.remark,
        checkin_row_index=body.checkinRowIndex,
        checkout_row_index=body.checkoutRowIndex,
        config=config,
    )
    return {
        "ok": True,
        "updated": [result.table for result in results],
        "writes": [result.as_dict() for result in results],
    }


def _time_attendance(body: TimeAttendanceQuery, store: TableStore, config: Settings) -> list[dict[str, Any]]:
    return list_time_attendance(
        store,
        from_=body.from_,
        to=body.to,
        name=body.name,
        email=body.email,
        district=body.district,
        directory=_directory(store, config),
        config=config,
    )


@app.post("/api/pa/time-attendance")
def time_attendance(
    body: TimeAttendanceQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    return {"ok": True, "rows": _time_attendance(body, store, config)}


@app.post("/api/pa/time-attendance/pdf")
def time_attendance_pdf(
    body: TimeAttendanceQuery,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> Response:
    report_payload = body.model_dump(by_alias=True)
    report_payload["rows"] = _time_attendance(body, store, config)
    return _pdf_response(generate_time_attendance_pdf(report_payload), "time-attendance.pdf")


@app.get("/api/pa/leave")
def leave_list(
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
    email: str | None = None,
    employeeNo: str | None = None,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    rows = list_leaves(store, from_=from_, to=to, email=email, employee_no=employeeNo, config=config)
    return {"ok": True, "rows": rows}


@app.post("/api/pa/leave")
def leave_add(
    body: LeaveRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    identity = body.model_dump(exclude={"dt", "leaveType", "reason"})
    identity["email"] = identity.get("email") or identity.get("username")
    directory = _directory(store, config)
    if directory is not None:
        directory.backfill(identity)
    add_leave(
        store,
        dt=body.dt,
        leave_type=body.leaveType,
        reason=body.reason,
        identity=identity,
        config=config,
    )
    return {"ok": True}


@app.post("/api/pa/leave/delete")
def leave_delete(
    body: LeaveDeleteRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    result = add_leave_delete(
        store,
        dt_iso=body.dt or body.dtISO or "",
        employee_no=body.employeeNo,
        email=body.email,
        username=body.username,
        by=body.by,
        config=config,
    )
    return {"ok": True, "write": result.as_dict()}


@app.get("/api/pa/users")
def users(
    group: str | None = None,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    return {"ok": True, "users": list_users(store, group=group, config=config)}


@app.get("/api/pa/calendar/holidays")
def holidays(
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    return {"ok": True, "holidays": list_holidays(store, from_=from_, to=to, config=config)}


@app.get("/api/pa/calendar/weekly")
def weekly_off_get(
    employeeNo: str | None = None,
    username: str | None = None,
    email: str | None = None,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    identity = employeeNo or username or email or ""
    return {"ok": True, "config": get_weekly_off(store, identity, config=config)}


@app.post("/api/pa/calendar/weekly")
def weekly_off_set(
    body: WeeklyOffRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    days = {
        "mon": body.mon,
        "tue": body.tue,
        "wed": body.wed,
        "thu": body.thu,
        "fri": body.fri,
        "sat": body.sat,
        "sun": body.sun,
    }
    result = set_weekly_off(
        store,
        body.employeeNo or body.username or body.email or "",
        days,
        effective_from=body.effectiveFrom,
        config=config,
    )
    return {"ok": True, "write": result.as_dict()}


@app.get("/api/pa/calendar/dayoff")
def day_off_list(
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
    email: str | None = None,
    employeeNo: str | None = None,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    items = list_day_offs(store, from_=from_, to=to, email=email, employee_no=employeeNo, config=config)
    return {"ok": True, "dayoffs": items}


@app.post("/api/pa/calendar/dayoff")
def day_off_add(
    body: DayOffRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    result = add_day_off(
        store,
        date_iso=body.dateISO,
        leave_type=body.leaveType,
        employee_no=body.employeeNo,
        email=body.email,
        username=body.username,
        remark=body.remark,
        by=body.by,
        config=config,
    )
    return {"ok": True, "write": result.as_dict()}


@app.post("/api/pa/upload-photo")
def upload_photo(body: UploadPhotoRequest, store: TableStore = Depends(get_store)) -> dict[str, Any]:
    if not body.fileName or not body.contentBase64:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing fields")
    try:
        uploaded = store.client.upload_file_base64(body.fileName, body.contentBase64)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"ok": True, **uploaded}


@app.post("/api/auth/resolve")
def auth_resolve(
    body: ResolveRequest,
    store: TableStore = Depends(get_store),
    config: Settings = Depends(get_config),
) -> dict[str, Any]:
    if not body.email and not body.user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing email or user")
    return {"ok": True, **resolve_user_role(store, email=body.email, user=body.user, config=config)}


@app.post("/api/geo/distance")
def geo_distance(body: DistanceRequest, config: Settings = Depends(get_config)) -> dict[str, Any]:
    max_km = body.maxKm if body.maxKm is not None and body.maxKm > 0 else config.max_distance_km
    return {
        "ok": True,
        "distanceKm": compute_distance_km(body.a, body.b),
        "outOfArea": is_out_of_area(body.a, body.b, max_km),
        "maxKm": max_km,
    }

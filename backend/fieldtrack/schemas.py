from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Identity(_Request):
    email: str | None = None
    username: str | None = None
    name: str | None = None
    employeeNo: str | None = None
    supervisorEmail: str | None = None
    province: str | None = None
    channel: str | None = None
    district: str | None = None


class CheckinRequest(Identity):
    checkin: str | None = Field(default=None, description="ISO timestamp; defaults to now")
    locationName: str = ""
    gps: str | None = Field(default=None, description="'lat, lon'")
    checkinAddress: str | None = None
    jobTitle: str | None = None
    jobDetail: str | None = None
    photoUrl: str | None = None


class CheckoutRequest(Identity):
    checkout: str | None = Field(default=None, description="ISO timestamp; defaults to now")
    locationName: str = ""
    checkoutGps: str | None = None
    checkoutAddress: str | None = None
    checkoutPhotoUrl: str | None = None
    problemDetail: str | None = None
    jobRemark: str | None = None


class DateRange(_Request):
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None


class ActivityQuery(DateRange):
    name: str | None = None
    email: str | None = None
    employeeNo: str | None = None
    district: str | None = None
    group: str | None = None
    location: str | None = None
    status: str | None = None


class SummaryQuery(DateRange):
    name: str | None = None
    district: str | None = None
    group: str | None = None


class TimeAttendanceQuery(DateRange):
    name: str | None = None
    email: str | None = None
    district: str | None = None


class ReportUpdateRequest(_Request):
    date: str
    checkin: str | None = None
    checkout: str | None = None
    detail: str | None = None
    problemDetail: str | None = None
    problem: str | None = None
    jobRemark: str | None = None
    remark: str | None = None
    checkinRowIndex: int | None = None
    checkoutRowIndex: int | None = None


class LeaveRequest(Identity):
    dt: str
    leaveType: str = Field(alias="type")
    reason: str = ""


class LeaveDeleteRequest(_Request):
    dt: str | None = None
    dtISO: str | None = None
    employeeNo: str | None = None
    email: str | None = None
    username: str | None = None
    by: str = ""


class WeeklyOffRequest(_Request):
    employeeNo: str | None = None
    username: str | None = None
    email: str | None = None
    mon: bool = False
    tue: bool = False
    wed: bool = False
    thu: bool = False
    fri: bool = False
    sat: bool = False
    sun: bool = False
    effectiveFrom: str | None = None


class DayOffRequest(_Request):
    employeeNo: str | None = None
    email: str | None = None
    username: str | None = None
    dateISO: str = ""
    leaveType: str = ""
    remark: str = ""
    by: str = ""


class UploadPhotoRequest(_Request):
    fileName: str = ""
    contentBase64: str = ""


class ResolveRequest(_Request):
    email: str | None = None
    user: str | None = None


class DistanceRequest(_Request):
    a: str | list[float] | None = None
    b: str | list[float] | None = None
    maxKm: float | None = None

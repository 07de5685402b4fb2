import pytest

from fieldtrack.activities import blank_activity
from fieldtrack.attendance import (
    REMARK_CHECKOUT_WITHOUT_CHECKIN,
    REMARK_NO_CHECKOUT,
    build_time_attendance,
    identity_key,
    list_time_attendance,
)


def _visit(**values):
    record = blank_activity()
    record.update({"date": "2025-06-16", "email": "a@x.com", "name": "Alice", "employeeNo": "E1"})
    record.update(values)
    if "location" in values and "checkinLocation" not in values:
        record["checkinLocation"] = values["location"]
    return record


def test_first_checkin_and_last_checkout_across_visits():
    visits = [
        _visit(checkin="09:00", checkout="17:00", location="Store A", imageIn="a.jpg", checkoutLocation="Store A"),
        _visit(checkin="08:30", checkout="18:30", location="store a ", imageIn="b.jpg", checkoutLocation="store a"),
        _visit(checkin="10:00", checkout="16:00", location="Store B", imageIn="c.jpg", checkoutLocation="Store B"),
    ]

    rows = build_time_attendance(visits)

    assert len(rows) == 1
    row = rows[0]
    assert row["firstCheckin"] == "08:30"
    assert row["firstImage"] == "b.jpg"
    assert row["firstLocation"] == "store a"
    assert row["lastCheckout"] == "18:30"
    assert row["lastLocation"] == "store a"
    assert row["locationCount"] == 2
    assert row["visitCount"] == 3
    assert row["remark"] == ""


def test_first_checkin_tie_keeps_first_seen():
    visits = [
        _visit(checkin="08:30", location="Store A", imageIn="first.jpg"),
        _visit(checkin="08.30", location="Store B", imageIn="second.jpg"),
    ]

    row = build_time_attendance(visits)[0]

    assert row["firstImage"] == "first.jpg"


def test_unparsable_times_never_win():
    visits = [
        _visit(checkin="", checkout="", location="Store A"),
        _visit(checkin="10:15", checkout="11:00", location="Store B", checkoutLocation="Store B"),
        _visit(checkin="later", checkout="soon", location="Store C"),
    ]

    row = build_time_attendance(visits)[0]

    assert row["firstCheckin"] == "10:15"
    assert row["lastCheckout"] == "11:00"
    assert row["locationCount"] == 3


@pytest.mark.parametrize("reverse", [False, True])
def test_last_fields_are_backfilled_from_other_checkouts(reverse):
    visits = [
        _visit(checkin="08:00", checkout="18:00", location="Store A", checkoutLocation="Store A"),
        _visit(checkin="09:00", checkout="12:00", location="Store B", imageOut="out-b.jpg",
               checkoutGps="13.7, 100.5", checkoutLocation="Store B"),
    ]
    if reverse:
        visits.reverse()

    row = build_time_attendance(visits)[0]

    assert row["lastCheckout"] == "18:00"
    assert row["lastLocation"] == "Store A"
    assert row["lastImage"] == "out-b.jpg"
    assert row["lastGps"] == "13.7, 100.5"


def test_dotted_times_are_reported_with_colons():
    row = build_time_attendance([_visit(checkin="08.05", checkout="17.40", location="Store A")])[0]

    assert row["firstCheckin"] == "08:05"
    assert row["lastCheckout"] == "17:40"


def test_leave_records_fold_into_the_same_day():
    visits = [_visit(checkin="08:00", checkout="12:00", location="Store A")]
    leaves = [
        {"date": "2025-06-16", "email": "A@x.com", "leaveType": "Sick", "reason": "flu"},
        {"date": "2025-06-16", "email": "a@x.com", "leaveType": "Annual", "reason": ""},
        {"date": "2025-06-17", "email": "a@x.com", "name": "Alice", "leaveType": "Annual", "reason": "trip"},
    ]

    rows = build_time_attendance(visits, leaves)

    assert [row["date"] for row in rows] == ["2025-06-16", "2025-06-17"]
    assert rows[0]["leave"] == "Sick; Annual"
    assert rows[0]["leaveReason"] == "flu"
    assert rows[1]["leave"] == "Annual"
    assert rows[1]["visitCount"] == 0
    assert rows[1]["remark"] == ""


def test_remarks_for_missing_punches():
    visits = [
        _visit(checkin="08:00", location="Store A"),
        _visit(date="2025-06-17", checkout="17:00", location="Store A", checkoutLocation="Store A"),
    ]

    rows = build_time_attendance(visits)

    assert rows[0]["remark"] == REMARK_NO_CHECKOUT
    assert rows[1]["remark"] == REMARK_CHECKOUT_WITHOUT_CHECKIN


def test_people_are_separated_and_sorted():
    visits = [
        _visit(email="b@x.com", name="bob", employeeNo="E2", checkin="08:00", location="S"),
        _visit(email="", name="Anna", employeeNo="E9", checkin="08:00", location="S"),
        _visit(email="c@x.com", name="Bob", employeeNo="E1", checkin="08:00", location="S"),
        _visit(date="2025-06-15", email="z@x.com", name="Zed", checkin="08:00", location="S"),
    ]

    rows = build_time_attendance(visits)

    assert [(row["date"], row["name"], row["employeeNo"]) for row in rows] == [
        ("2025-06-15", "Zed", "E1"),
        ("2025-06-16", "Anna", "E9"),
        ("2025-06-16", "Bob", "E1"),
        ("2025-06-16", "bob", "E2"),
    ]


def test_filters_by_name_and_district():
    visits = [
        _visit(name="Alice", district="North", checkin="08:00", location="S"),
        _visit(email="b@x.com", name="Bob", district="South", checkin="08:00", location="S"),
    ]

    assert [row["name"] for row in build_time_attendance(visits, name="ali")] == ["Alice"]
    assert [row["name"] for row in build_time_attendance(visits, district="sou")] == ["Bob"]
    assert build_time_attendance(visits, from_="2025-06-17") == []


def test_identity_key_fallbacks():
    assert identity_key({"email": " A@x.com", "employeeNo": "E1"}) == "a@x.com"
    assert identity_key({"email": "", "employeeNo": "E1", "name": "Alice"}) == "e1"
    assert identity_key({"name": "Alice"}) == "alice"
    assert identity_key({}) == "unknown"


def test_list_time_attendance_reads_activities_and_leaves(store, config):
    store.add_named_row(
        "CheckIn", {"email": "a@x.com", "checkinISO": "2025-06-16T01:00:00Z", "locationName": "Store A", "name": "Alice"}
    )
    store.add_named_row(
        "CheckOut", {"email": "a@x.com", "checkoutISO": "2025-06-16T09:30:00Z", "locationName": "Store A"}
    )
    store.add_named_row(
        "Leave", {"dtISO": "2025-06-16T00:00:00.000Z", "leaveType": "Half day", "email": "a@x.com", "name": "Alice"}
    )

    rows = list_time_attendance(store, from_="2025-06-16", to="2025-06-16", config=config)

    assert len(rows) == 1
    assert rows[0]["firstCheckin"] == "01:00"
    assert rows[0]["lastCheckout"] == "09:30"
    assert rows[0]["leave"] == "Half day"

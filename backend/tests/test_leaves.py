from dataclasses import replace

import pytest
from fastapi import HTTPException

from fieldtrack.errors import ConfigurationError, GraphError
from fieldtrack.leaves import add_leave, add_leave_delete, list_leaves


def _leave(store, dt, leave_type, **extra):
    store.add_named_row("Leave", {"dtISO": dt, "leaveType": leave_type, **extra})


def test_list_leaves_sorts_and_filters(store, config):
    _leave(store, "2025-06-18T00:00:00.000Z", "Annual", email="a@x.com", employeeNo="E1")
    _leave(store, "2025-06-16T00:00:00.000Z", "Sick", email="b@x.com", employeeNo="E2", reason="flu")
    _leave(store, "2025-06-17T00:00:00.000Z", "Annual", email="A@x.com", employeeNo="E1")

    items = list_leaves(store, config=config)

    assert [item["date"] for item in items] == ["2025-06-16", "2025-06-17", "2025-06-18"]
    assert items[0]["reason"] == "flu"
    assert [item["date"] for item in list_leaves(store, email="a@X.com", config=config)] == [
        "2025-06-17",
        "2025-06-18",
    ]
    assert len(list_leaves(store, employee_no="e2", config=config)) == 1
    assert [item["date"] for item in list_leaves(store, from_="2025-06-17", to="2025-06-17", config=config)] == [
        "2025-06-17"
    ]


def test_soft_deleted_leaves_are_hidden(store, config):
    _leave(store, "2025-06-16T00:00:00.000Z", "Sick", email="a@x.com", employeeNo="E1")
    _leave(store, "2025-06-17T00:00:00.000Z", "Sick", email="a@x.com", employeeNo="E1")
    _leave(store, "2025-06-18T00:00:00.000Z", "Sick", email="b@x.com")
    store.add_named_row("LeaveDeletes", {"dtISO": "2025-06-16T00:00:00.000Z", "employeeNo": "e1"})
    store.add_named_row("LeaveDeletes", {"dtISO": "2025-06-18T00:00:00.000Z", "email": "B@x.com"})

    items = list_leaves(store, config=config)

    assert [item["date"] for item in items] == ["2025-06-17"]


def test_missing_deletes_table_is_ignored(store, config):
    del store.tables["LeaveDeletes"]
    _leave(store, "2025-06-16T00:00:00.000Z", "Sick", email="a@x.com")

    assert len(list_leaves(store, config=config)) == 1


def test_other_deletes_errors_propagate(store, config):
    class FailingStore(type(store)):
        def get_headers(self, table):
            if table == "LeaveDeletes":
                raise GraphError("Read table failed 500", status_code=500)
            return super().get_headers(table)

    failing = FailingStore({"Leave": (store.tables["Leave"][0], [])})

    with pytest.raises(GraphError):
        list_leaves(failing, config=config)


def test_add_leave_writes_positional_row(store, config):
    add_leave(
        store,
        dt="2025-06-16T08:00:00+07:00",
        leave_type=" Annual ",
        reason="trip",
        identity={"email": "a@x.com", "name": "Alice", "employeeNo": "E1", "district": "North"},
        config=config,
    )

    row = store.tables["Leave"][1][0]
    assert row == ["2025-06-16T01:00:00.000Z", "Annual", "trip", "a@x.com", "Alice", "E1", "", "", "", "North"]
    assert list_leaves(store, config=config)[0]["date"] == "2025-06-16"


def test_add_leave_validation(store, config):
    with pytest.raises(HTTPException, match="dt must be an ISO date/time"):
        add_leave(store, dt="tomorrow", leave_type="Sick", config=config)
    with pytest.raises(HTTPException, match="Missing leave type"):
        add_leave(store, dt="2025-06-16", leave_type=" ", config=config)


def test_add_leave_delete_hides_the_leave(store, config):
    _leave(store, "2025-06-16T00:00:00.000Z", "Sick", email="a@x.com")

    result = add_leave_delete(
        store, dt_iso="2025-06-16T00:00:00.000Z", email="a@x.com", by="boss@x.com", config=config
    )

    assert result.ok
    headers, rows = store.tables["LeaveDeletes"]
    written = dict(zip(headers, rows[0]))
    assert written["email"] == "a@x.com"
    assert written["deletedBy"] == "boss@x.com"
    assert written["deletedAt"].endswith("Z")
    assert list_leaves(store, config=config) == []


def test_add_leave_delete_requires_configuration(store, config):
    unconfigured = replace(config, tables={"leave": "Leave"})

    with pytest.raises(ConfigurationError):
        add_leave_delete(store, dt_iso="2025-06-16T00:00:00.000Z", email="a@x.com", config=unconfigured)
    with pytest.raises(HTTPException, match="Missing dt"):
        add_leave_delete(store, dt_iso="", email="a@x.com", config=config)

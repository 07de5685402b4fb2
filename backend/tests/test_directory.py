from fieldtrack.directory import UserDirectory, list_users, resolve_user_role
from fieldtrack.errors import GraphError

from conftest import FakeStore


def _directory():
    return UserDirectory(
        [
            {"email": "a@x.com", "name": "Alice", "employeeNo": "E1", "district": "North"},
            {"email": "b@x.com", "name": "Bob", "employeeNo": "E2", "district": "South"},
            {"email": "dup@x.com", "name": "Alice", "employeeNo": "E3", "district": "East"},
        ]
    )


def test_lookup_prefers_employee_number_then_identity_then_name():
    directory = _directory()

    assert directory.lookup(employee_no="e2", identity="a@x.com")["name"] == "Bob"
    assert directory.lookup(employee_no="E404", identity=" A@X.com ")["employeeNo"] == "E1"
    assert directory.lookup(name="alice")["employeeNo"] == "E1"
    assert directory.lookup(name="nobody") is None
    assert directory.lookup() is None


def test_backfill_never_overwrites_present_values():
    directory = _directory()
    record = {"email": "a@x.com", "name": "", "employeeNo": "", "district": "Central", "group": ""}

    directory.backfill(record)

    assert record["name"] == "Alice"
    assert record["employeeNo"] == "E1"
    assert record["district"] == "Central"
    assert record["group"] == ""
    assert "province" not in record


def test_from_rows_skips_blank_rows():
    directory = UserDirectory.from_rows(["email", "name"], [["a@x.com", "Alice"], ["", ""]])
    assert len(directory) == 1


def test_list_users_is_naturally_sorted(store, config):
    for email, employee_no, group in (
        ("e10@x.com", "E10", "Retail"),
        ("e2@x.com", "E2", "Retail"),
        ("e1@x.com", "E1", "Wholesale"),
        ("noid@x.com", "", "Retail"),
    ):
        store.add_named_row("Users", {"email": email, "employeeNo": employee_no, "group": group})

    users = list_users(store, config=config)

    assert [user["employeeNo"] for user in users] == ["E1", "E2", "E10"]
    assert users[0]["name"] == "e1@x.com"
    assert [user["employeeNo"] for user in list_users(store, group="retail", config=config)] == ["E2", "E10"]


def test_resolve_role_from_directory(store, config):
    store.add_named_row(
        "Users", {"email": "boss@x.com", "username": "boss", "name": "Boss", "role": "supervisor", "district": "N"}
    )

    resolved = resolve_user_role(store, email="BOSS@x.com", config=config)

    assert resolved["role"] == "SUPERVISOR"
    assert resolved["name"] == "Boss"
    assert resolved["email"] == "boss"
    assert resolved["metadata"]["district"] == "N"
    assert resolved["resolution"]["source"] == "directory"


def test_resolve_role_unknown_role_is_agent(store, config):
    store.add_named_row("Users", {"email": "a@x.com", "role": "owner"})
    assert resolve_user_role(store, email="a@x.com", config=config)["role"] == "AGENT"


def test_resolve_role_falls_back_to_keywords(store, config):
    resolved = resolve_user_role(store, email="area.manager@x.com", config=config)

    assert resolved["role"] == "SUPERVISOR"
    assert resolved["resolution"] == {
        "source": "fallback",
        "confidence": "medium",
        "reason": "User not found in directory; matched supervisor keyword in email",
    }
    assert resolve_user_role(store, user="jdoe", config=config)["role"] == "AGENT"


class BrokenStore(FakeStore):
    def get_headers(self, table):
        raise GraphError("Graph unavailable", status_code=503)


def test_resolve_role_survives_directory_errors(config):
    resolved = resolve_user_role(BrokenStore(), email="a@x.com", config=config)

    assert resolved["role"] == "AGENT"
    assert resolved["resolution"]["reason"] == "Directory lookup failed"

import json

import pytest
from fastapi.testclient import TestClient

from auth import TokenService, UserIdentity
from config import Settings
from main import create_app


def _settings(**overrides) -> Settings:
    values = dict(
        host="127.0.0.1",
        port=8000,
        jwt_secret="test-secret",
        database_url="sqlite://",
        database_name="ledger_test",
        environment="production",
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def client():
    with TestClient(create_app(_settings())) as test_client:
        yield test_client


def _mutation(client, path, payload, token=None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return client.post(f"/rpc/{path}", json=payload, headers=headers)


def _query(client, path, payload=None, token=None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    params = {"input": json.dumps(payload)} if payload is not None else {}
    return client.get(f"/rpc/{path}", params=params, headers=headers)


def _register(client, email="ann@example.com", password="hunter22") -> dict:
    response = _mutation(client, "auth.register", {"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["result"]["data"]


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_register_login_and_me(client) -> None:
    registered = _register(client)
    assert registered["user"]["email"] == "ann@example.com"
    assert len(registered["user"]["id"]) == 24

    login = _mutation(client, "auth.login", {"email": "ann@example.com", "password": "hunter22"})
    assert login.status_code == 200
    token = login.json()["result"]["data"]["token"]

    me = _query(client, "auth.me", token=token)
    assert me.json() == {"result": {"data": registered["user"]}}

    anonymous = _query(client, "auth.me")
    assert anonymous.json() == {"result": {"data": None}}

    tampered = _query(client, "auth.me", token=token[:-4] + "AAAA")
    assert tampered.status_code == 200
    assert tampered.json()["result"]["data"] is None


def test_duplicate_registration_is_conflict(client) -> None:
    _register(client)

    response = _mutation(
        client, "auth.register", {"email": "ann@example.com", "password": "different"}
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE_ENTRY"


def test_login_errors_do_not_reveal_accounts(client) -> None:
    _register(client)

    wrong = _mutation(client, "auth.login", {"email": "ann@example.com", "password": "nope!!"})
    unknown = _mutation(client, "auth.login", {"email": "bob@example.com", "password": "hunter22"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json()["error"] == unknown.json()["error"]


def test_register_validation_error_has_field_tree(client) -> None:
    response = _mutation(client, "auth.register", {"email": "not-an-email", "password": "123"})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["data"]["path"] == "auth.register"
    assert set(error["data"]["errors"]["properties"]) == {"email", "password"}
    assert error["data"]["stack"] is None


def test_protected_procedures_require_token(client) -> None:
    response = _query(client, "transaction.list", {})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"
    assert response.json()["error"]["message"] == "You must be logged in to access this resource"


def test_transaction_lifecycle(client) -> None:
    token = _register(client)["token"]
    payload = {
        "type": "expense",
        "amount": 12.5,
        "category": ["Food", "Dining"],
        "date": "2025-01-05T12:00:00",
        "description": "Lunch",
    }

    added = _mutation(client, "transaction.add", payload, token)
    assert added.status_code == 200
    ack = added.json()["result"]["data"]
    assert ack["acknowledged"] is True
    txn_id = ack["insertedId"]

    fetched = _query(client, "transaction.get", {"id": txn_id}, token).json()["result"]["data"]
    assert fetched["id"] == txn_id
    assert fetched["type"] == "expense"
    assert fetched["amount"] == 12.5
    assert fetched["category"] == ["Food", "Dining"]
    assert fetched["description"] == "Lunch"
    assert fetched["createdAt"] == "2025-01-05T12:00:00"
    assert fetched["updatedAt"] == "2025-01-05T12:00:00"

    updated = _mutation(client, "transaction.update", {"_id": txn_id, "amount": 15}, token)
    assert updated.json()["result"]["data"] == {"acknowledged": True, "insertedId": txn_id}

    listed = _query(
        client, "transaction.list", {"pagination": {"page": 1, "pageSize": 10}}, token
    ).json()["result"]["data"]
    assert listed["totalCount"] == 1
    assert listed["totalPages"] == 1
    assert listed["pageSize"] == 10
    assert listed["transactions"][0]["amount"] == 15

    deleted = _mutation(client, "transaction.delete", {"id": txn_id}, token)
    assert deleted.json()["result"]["data"] == {"acknowledged": True}

    missing = _query(client, "transaction.get", {"id": txn_id}, token)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


def test_transactions_are_private_to_their_owner(client) -> None:
    ann = _register(client, "ann@example.com")["token"]
    bob = _register(client, "bob@example.com")["token"]
    txn_id = _mutation(
        client,
        "transaction.add",
        {"type": "income", "amount": 100, "category": [], "date": "2025-01-05T00:00:00Z"},
        ann,
    ).json()["result"]["data"]["insertedId"]

    responses = [
        _query(client, "transaction.get", {"id": txn_id}, bob),
        _mutation(client, "transaction.update", {"id": txn_id, "amount": 1}, bob),
        _mutation(client, "transaction.delete", {"id": txn_id}, bob),
    ]

    for response in responses:
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Transaction not found"
    bob_list = _query(client, "transaction.list", {}, bob).json()["result"]["data"]
    assert bob_list["totalCount"] == 0


def test_list_pagination_window(client) -> None:
    token = _register(client)["token"]
    for day in ("2025-01-06T00:00:00", "2025-01-05T00:00:00"):
        _mutation(
            client,
            "transaction.add",
            {"type": "expense", "amount": 1, "category": ["x"], "date": day},
            token,
        )

    page = _query(
        client, "transaction.list", {"pagination": {"page": 2, "pageSize": 1}}, token
    ).json()["result"]["data"]

    assert page["totalCount"] == 2
    assert page["totalPages"] == 2
    assert page["page"] == 2
    assert [t["createdAt"] for t in page["transactions"]] == ["2025-01-06T00:00:00"]


def test_page_size_out_of_range_is_rejected(client) -> None:
    token = _register(client)["token"]

    response = _query(
        client, "transaction.list", {"pagination": {"pageSize": 101}}, token
    )

    assert response.status_code == 400
    tree = response.json()["error"]["data"]["errors"]
    assert "pageSize" in tree["properties"]["pagination"]["properties"]


def test_malformed_ids_are_validation_errors(client) -> None:
    token = _register(client)["token"]

    response = _query(client, "transaction.get", {"id": "xyz"}, token)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_procedure_and_wrong_method(client) -> None:
    unknown = _query(client, "transaction.nope", {})
    wrong_method = _query(client, "auth.register", {})

    assert unknown.status_code == 404
    assert wrong_method.status_code == 404
    assert wrong_method.json()["error"]["code"] == "NOT_FOUND"


def test_query_input_must_be_json(client) -> None:
    response = client.get("/rpc/transaction.list", params={"input": "{not json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_development_mode_includes_stack() -> None:
    app = create_app(_settings(environment="development"))
    with TestClient(app) as client:
        response = _mutation(client, "auth.login", {"email": "ghost@example.com", "password": "x"})

    assert response.status_code == 401
    assert response.json()["error"]["data"]["stack"]


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_amounts_are_rejected(client, amount) -> None:
    token = _register(client)["token"]
    body = (
        '{"type": "expense", "amount": %s, "category": ["Food"], '
        '"date": "2025-01-05T12:00:00"}' % amount
    )

    response = client.post(
        "/rpc/transaction.add",
        content=body,
        headers={"Content-Type": "application/json", "Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    listed = _query(client, "transaction.list", {}, token)
    assert listed.status_code == 200
    assert listed.json()["result"]["data"]["totalCount"] == 0


def test_string_amounts_are_rejected(client) -> None:
    token = _register(client)["token"]
    payload = {"type": "expense", "amount": "12", "category": [], "date": "2025-01-05T12:00:00"}

    response = _mutation(client, "transaction.add", payload, token)

    assert response.status_code == 400
    assert "amount" in response.json()["error"]["data"]["errors"]["properties"]


def test_token_for_unknown_user_is_not_a_duplicate(client) -> None:
    token = TokenService("test-secret").issue(UserIdentity("f" * 24, "ghost@example.com"))
    payload = {"type": "expense", "amount": 5, "category": ["x"], "date": "2025-01-05T12:00:00"}

    response = _mutation(client, "transaction.add", payload, token)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "DATABASE_ERROR"


def test_created_at_filter_accepts_space_separated_timestamp(client) -> None:
    token = _register(client)["token"]
    _mutation(
        client,
        "transaction.add",
        {"type": "expense", "amount": 3, "category": ["x"], "date": "2025-01-05T08:00:00"},
        token,
    )

    response = _query(client, "transaction.list", {"createdAt": "2025-01-05 12:00:00"}, token)

    assert response.status_code == 200
    assert response.json()["result"]["data"]["totalCount"] == 1

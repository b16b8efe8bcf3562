from decimal import Decimal

from fastapi.testclient import TestClient

from envelopes.main import app

from conftest import OTHER_USER

MONTH = "2024-03"


def _d(value) -> Decimal:
    return Decimal(str(value))


def _account(client, name="Checking", type_="cash", balance="1000", **extra):
    resp = client.post("/accounts", json={"name": name, "type": type_, "balance": balance, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _envelope(client, name, allocated="0", month=MONTH, **extra):
    resp = client.post("/envelopes", json={"name": name, "month": month, "allocated": allocated, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _spend(client, account_id, amount, category, on="2024-03-10"):
    resp = client.post(
        "/transactions",
        json={"account_id": account_id, "amount": f"-{amount}", "category": category, "date": on},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _dashboard(client, month=MONTH):
    resp = client.get("/dashboard", params={"month": month})
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---- Basics ----

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "env": "testing"}


def test_requests_without_user_are_rejected():
    anonymous = TestClient(app)
    assert anonymous.get("/envelopes").status_code == 401


def test_bad_month_is_a_validation_error(client):
    resp = client.get("/envelopes", params={"month": "2024-13"})
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation"
    assert resp.json()["entity"] == "period"


# ---- Dashboard and allocation ----

def test_to_be_assigned_follows_allocation(client):
    _account(client)
    groceries = _envelope(client, "Groceries", "300")
    assert _d(groceries["available"]) == _d(300)

    snapshot = _dashboard(client)
    assert _d(snapshot["to_be_assigned"]["allocated"]) == _d(700)
    assert _d(snapshot["totals"]["total_cash"]) == _d(1000)
    assert _d(snapshot["totals"]["to_be_assigned"]) == _d(700)

    resp = client.put(f"/envelopes/{groceries['id']}/allocation", json={"allocated": "400"})
    assert resp.status_code == 200
    assert _d(resp.json()["allocated"]) == _d(400)

    snapshot = _dashboard(client)
    assert _d(snapshot["to_be_assigned"]["allocated"]) == _d(600)
    group = next(g for g in snapshot["groups"] if g["name"] == "Frequent")
    assert [e["name"] for e in group["envelopes"]] == ["Groceries"]
    assert _d(group["available"]) == _d(400)
    assert all(e["name"] != "To Be Assigned" for g in snapshot["groups"] for e in g["envelopes"])


def test_envelope_errors_map_to_status_codes(client):
    _envelope(client, "Groceries")

    duplicate = client.post("/envelopes", json={"name": "Groceries", "month": MONTH})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "conflict"

    income = client.post("/envelopes", json={"name": "Side Income", "month": MONTH})
    assert income.status_code == 422
    assert income.json()["error"] == "validation"

    negative = client.post("/envelopes", json={"name": "Rent", "month": MONTH, "allocated": "-5"})
    assert negative.status_code == 422

    missing = client.put("/envelopes/9999/allocation", json={"allocated": "10"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_populate_defaults_and_delete(client):
    created = client.post("/envelopes/defaults", params={"month": MONTH})
    assert created.status_code == 201
    names = [e["name"] for e in created.json()]
    assert "Groceries" in names
    assert "To Be Assigned" not in names

    again = client.post("/envelopes/defaults", params={"month": MONTH})
    assert again.json() == []

    groceries = next(e for e in created.json() if e["name"] == "Groceries")
    assert client.delete(f"/envelopes/{groceries['id']}").status_code == 204
    listed = client.get("/envelopes", params={"month": MONTH}).json()
    assert "Groceries" not in [e["name"] for e in listed]


def test_move_money_between_envelopes(client):
    _account(client)
    groceries = _envelope(client, "Groceries", "300")
    dining = _envelope(client, "Dining")

    resp = client.post(
        "/envelopes/move",
        json={"from_envelope_id": groceries["id"], "to_envelope_id": dining["id"], "amount": "50"},
    )
    assert resp.status_code == 201, resp.text
    transfer = resp.json()
    assert transfer["kind"] == "manual"
    assert transfer["automated"] is False

    listed = {e["name"]: e for e in client.get("/envelopes", params={"month": MONTH}).json()}
    assert _d(listed["Groceries"]["allocated"]) == _d(250)
    assert _d(listed["Dining"]["allocated"]) == _d(50)
    assert _d(listed["To Be Assigned"]["allocated"]) == _d(700)

    too_much = client.post(
        "/envelopes/move",
        json={"from_envelope_id": dining["id"], "to_envelope_id": groceries["id"], "amount": "80"},
    )
    assert too_much.status_code == 422

    transfers = client.get("/transfers", params={"month": MONTH}).json()
    assert len(transfers) == 1


def test_cover_overspending(client):
    checking = _account(client)
    vacation = _envelope(client, "Vacation", "100")
    _spend(client, checking["id"], "30", "Dining")
    dining = next(e for e in client.get("/envelopes", params={"month": MONTH}).json() if e["name"] == "Dining")

    resp = client.post(
        "/envelopes/cover-overspending",
        json={"source_envelope_id": vacation["id"], "amount": "30", "target_envelope_ids": [dining["id"]]},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert _d(body["shares"][str(dining["id"])]) == _d(30)
    assert _d(body["source"]["allocated"]) == _d(70)
    assert body["transfers"][0]["kind"] == "overspend"


def test_rollover_endpoint(client):
    checking = _account(client)
    _envelope(client, "Groceries", "300")
    _spend(client, checking["id"], "50", "Eating Out")

    first = client.post("/envelopes/rollover", json={"from_month": MONTH})
    assert first.status_code == 200, first.text
    assert first.json()["to_period"] == "2024-04"
    assert first.json()["already_performed"] is False
    assert _d(first.json()["to_be_assigned_deduction"]) == _d(50)

    second = client.post("/envelopes/rollover", json={"from_month": MONTH})
    assert second.json()["already_performed"] is True

    backwards = client.post("/envelopes/rollover", json={"from_month": MONTH, "to_month": "2024-02"})
    assert backwards.status_code == 422

    april = _dashboard(client, "2024-04")
    assert _d(april["to_be_assigned"]["allocated"]) == _d(600)


# ---- Transactions ----

def test_transaction_lifecycle(client):
    checking = _account(client)

    created = _spend(client, checking["id"], "42.10", "Groceries")
    assert created["envelope_id"] is not None
    assert created["cleared"] is True
    assert created["approved"] is True

    listed = client.get("/transactions", params={"month": MONTH}).json()
    assert [t["id"] for t in listed] == [created["id"]]

    patched = client.patch(f"/transactions/{created['id']}", json={"category": "Eating Out", "flag_color": "blue"})
    assert patched.status_code == 200
    assert patched.json()["category"] == "Eating Out"
    assert patched.json()["flag_color"] == "blue"

    approved = client.post("/transactions/approve", json={"transaction_ids": [created["id"]], "approved": False})
    assert approved.json()[0]["approved"] is False

    assert client.delete(f"/transactions/{created['id']}").status_code == 204
    assert client.get("/transactions", params={"month": MONTH}).json() == []

    accounts = client.get("/accounts").json()
    assert _d(accounts[0]["balance"]) == _d(1000)


def test_transaction_validation(client):
    checking = _account(client)

    zero = client.post("/transactions", json={"account_id": checking["id"], "amount": "0", "category": "Groceries"})
    assert zero.status_code == 422
    assert zero.json()["error"] == "validation"

    pink = client.post(
        "/transactions",
        json={"account_id": checking["id"], "amount": "-5", "category": "Groceries", "flag_color": "pink"},
    )
    assert pink.status_code == 422


def test_other_users_cannot_touch_my_account(client):
    checking = _account(client)
    resp = client.post(
        "/transactions",
        json={"account_id": checking["id"], "amount": "-5", "category": "Groceries"},
        headers={"X-User-Id": OTHER_USER},
    )
    assert resp.status_code == 404
    assert client.get("/accounts", headers={"X-User-Id": OTHER_USER}).json() == []


def test_mutations_notify_after_commit(client, notifier):
    checking = _account(client)
    notifier.events.clear()

    _spend(client, checking["id"], "5", "Groceries")

    kinds = {kind.value for kind in notifier.kinds_for("user-1")}
    assert kinds == {"accounts-changed", "envelopes-changed", "transactions-changed"}


# ---- Accounts, card payments and imports ----

def test_update_account(client):
    checking = _account(client)
    resp = client.patch(f"/accounts/{checking['id']}", json={"name": "Main", "is_just_watching": True})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Main"

    # just-watching accounts drop out of "To Be Assigned"
    assert _d(_dashboard(client)["totals"]["total_cash"]) == _d(0)

    bad_type = client.post("/accounts", json={"name": "Gold", "type": "metal"})
    assert bad_type.status_code == 422


def test_card_payment(client):
    checking = _account(client)
    visa = _account(client, "Visa", "credit", "-300")

    resp = client.post(
        "/accounts/card-payment",
        json={"from_account_id": checking["id"], "to_account_id": visa["id"], "amount": "100", "date": "2024-03-15"},
    )
    assert resp.status_code == 201, resp.text
    outflow, inflow = resp.json()
    assert _d(outflow["amount"]) == _d(-100)
    assert outflow["category"] == "Visa Payment"
    assert _d(inflow["amount"]) == _d(100)
    assert inflow["envelope_id"] is None

    balances = {a["name"]: _d(a["balance"]) for a in client.get("/accounts").json()}
    assert balances == {"Checking": _d(900), "Visa": _d(-200)}

    wrong_way = client.post(
        "/accounts/card-payment",
        json={"from_account_id": visa["id"], "to_account_id": checking["id"], "amount": "10"},
    )
    assert wrong_way.status_code == 422


def test_json_import(client):
    checking = _account(client)
    rows = {
        "transactions": [
            {"external_id": "a1", "amount": "4.75", "date": "2024-03-04", "description": "STARBUCKS #12"},
            {"external_id": "a2", "amount": "60", "date": "2024-03-05", "description": "Kroger"},
        ]
    }

    resp = client.post(f"/accounts/{checking['id']}/import", json=rows)
    assert resp.status_code == 200, resp.text
    assert resp.json()["created"] == 2

    again = client.post(f"/accounts/{checking['id']}/import", json=rows).json()
    assert again["created"] == 0
    assert again["skipped_external_ids"] == ["a1", "a2"]

    imported = client.get("/transactions", params={"month": MONTH}).json()
    assert {t["category"] for t in imported} == {"Eating Out", "Groceries"}
    assert all(t["approved"] is False for t in imported)


def test_statement_upload(client):
    checking = _account(client)
    csv = b"Date,Description,Amount\n2024-03-04,KROGER,25.10\n2024-03-06,SHELL OIL,40.00\n"

    resp = client.post(
        f"/accounts/{checking['id']}/import/statement",
        files={"statement": ("march.csv", csv, "text/csv")},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["created"] == 2

    accounts = client.get("/accounts").json()
    assert _d(accounts[0]["balance"]) == _d("934.90")


def test_card_statement_upload_with_debit_column(client):
    card = _account(client, "Visa", "credit", "0")
    csv = b"Transaction ID,Posted Date,Merchant,Debit,Credit\nv1,2024-03-05,Pizza Place,25.00,\n"

    resp = client.post(
        f"/accounts/{card['id']}/import/statement",
        files={"statement": ("visa.csv", csv, "text/csv")},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["created"] == 1

    accounts = client.get("/accounts").json()
    assert _d(accounts[0]["balance"]) == _d("-25.00")


# ---- Goals and automation ----

def test_goals(client):
    _account(client)
    resp = client.post("/goals", json={"name": "Emergency Fund", "target_amount": "1000"})
    assert resp.status_code == 201, resp.text
    goal = resp.json()
    assert _d(goal["remaining"]) == _d(1000)
    assert goal["type"] == "savings"

    fund = _envelope(client, "Emergency Fund", "250")
    listed = client.get("/goals", params={"month": MONTH}).json()
    assert listed[0]["envelope_id"] == fund["id"]
    assert _d(listed[0]["current_amount"]) == _d(250)
    assert _d(listed[0]["percent_complete"]) == _d(25)

    bad = client.post("/goals", json={"name": "Loan", "target_amount": "0"})
    assert bad.status_code == 422


def test_automation_retry_with_nothing_pending(client):
    resp = client.post("/automation/retry")
    assert resp.status_code == 200
    assert resp.json() == {"processed": 0, "transfers": 0, "degraded": False, "errors": []}

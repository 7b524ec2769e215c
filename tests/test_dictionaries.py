import json

from tcrs_approval.models import AccountMaster, WorkflowHistory, WorkflowStep
from tests.conftest import ADMIN, APPROVER, auth

ADMIN_H = auth(ADMIN, "admin")


def _dict_history(db, key):
    return (
        db.query(WorkflowHistory, WorkflowStep.step_code)
        .join(WorkflowStep, WorkflowStep.step_id == WorkflowHistory.step_id)
        .filter(WorkflowHistory.request_id == key)
        .order_by(WorkflowHistory.executed_date)
        .all()
    )


def test_account_lifecycle_writes_one_row_per_action(client, db):
    r = client.post("/api/admin/dictionaries/accounts",
                    json={"account_code": "6100", "account_description": "Repairs"}, headers=ADMIN_H)
    assert r.status_code == 201, r.text
    assert r.json()["account_combined"] == "6100 - Repairs"
    assert r.json()["created_by"] == ADMIN

    r = client.put("/api/admin/dictionaries/accounts/6100",
                   json={"account_description": "Repairs & Maintenance"}, headers=ADMIN_H)
    assert r.status_code == 200
    assert r.json()["updated_by"] == ADMIN

    r = client.delete("/api/admin/dictionaries/accounts/6100", headers=ADMIN_H)
    assert r.status_code == 200
    assert db.get(AccountMaster, "6100") is None

    rows = _dict_history(db, "DICT-ACCOUNT-6100")
    assert [code for _, code in rows] == ["DICT_ACCOUNT_CREATED", "DICT_ACCOUNT_UPDATED", "DICT_ACCOUNT_DELETED"]
    updated = rows[1][0]
    assert json.loads(updated.previous_value)["account_description"] == "Repairs"
    assert json.loads(updated.new_value)["account_description"] == "Repairs & Maintenance"


def test_duplicate_account_is_400(client, db):
    body = {"account_code": "6100", "account_description": "Repairs"}
    assert client.post("/api/admin/dictionaries/accounts", json=body, headers=ADMIN_H).status_code == 201
    r = client.post("/api/admin/dictionaries/accounts", json=body, headers=ADMIN_H)
    assert r.status_code == 400
    assert len(_dict_history(db, "DICT-ACCOUNT-6100")) == 1


def test_missing_entry_is_404(client, db):
    assert client.put("/api/admin/dictionaries/facilities/NOPE", json={}, headers=ADMIN_H).status_code == 404
    assert client.delete("/api/admin/dictionaries/facilities/NOPE", headers=ADMIN_H).status_code == 404


def test_unknown_dictionary_is_404(client, db):
    assert client.get("/api/admin/dictionaries/vendors", headers=ADMIN_H).status_code == 404


def test_create_requires_key(client, db):
    r = client.post("/api/admin/dictionaries/facilities", json={"facility_description": "Shop"}, headers=ADMIN_H)
    assert r.status_code == 400


def test_approver_entry_requires_name_and_branch(client, db):
    r = client.post("/api/admin/dictionaries/approvers", json={"authorized_approver": "Boss"}, headers=ADMIN_H)
    assert r.status_code == 400

    r = client.post("/api/admin/dictionaries/approvers",
                    json={"authorized_approver": "Boss", "branch": "Calgary", "erp": "TCRS",
                          "email_address": APPROVER, "authorized_amount": 5000},
                    headers=ADMIN_H)
    assert r.status_code == 201, r.text
    approver_id = r.json()["approver_id"]

    r = client.post("/api/admin/dictionaries/approvers",
                    json={"authorized_approver": "Boss", "branch": "Edmonton"}, headers=ADMIN_H)
    assert r.status_code == 400

    rows = _dict_history(db, f"DICT-APPROVER-{approver_id}")
    assert [code for _, code in rows] == ["DICT_APPROVER_CREATED"]


def test_non_admin_forbidden(client, db):
    r = client.get("/api/admin/dictionaries/accounts", headers=auth(APPROVER, "approver"))
    assert r.status_code == 403


def test_public_pick_lists(client, db, approvers):
    h = auth(APPROVER, "approver")
    body = client.get("/api/dictionaries", headers=h).json()
    assert body["companies"] == [{"code": "TCRS", "description": "TCRS"}]
    assert {c["code"] for c in body["currencies"]} == {"CAD", "USD", "EUR"}

    r = client.get("/api/dictionaries/branches", params={"erp": "TCRS"}, headers=h)
    assert r.json() == {"branches": [{"code": "Calgary", "description": "Calgary"}]}
    assert client.get("/api/dictionaries/branches", headers=h).status_code == 400


def test_companies_fall_back_when_empty(client, db):
    body = client.get("/api/dictionaries", headers=auth(APPROVER, "approver")).json()
    assert "Sitech" in {c["code"] for c in body["companies"]}


def test_companies_endpoint(client, db, approvers):
    r = client.get("/api/dictionaries/companies", headers=auth(APPROVER, "approver"))
    assert r.json() == {"companies": [{"code": "TCRS", "description": "TCRS"}]}

import pytest

from tcrs_approval.models import GLCodingEntry, GLCodingUpload, InvoiceData, WorkflowHistory
from tests.conftest import ADMIN, APPROVER, BACKUP, OTHER_APPROVER, REQUESTER, auth, make_request


def _seed(db):
    make_request(db, "TCRS-2025-000001", status="pending")
    make_request(db, "TCRS-2025-000002", status="approved")
    make_request(db, "TCRS-2025-000003", status="rejected", approver=OTHER_APPROVER)
    make_request(db, "TCRS-2025-000004", status="in-review")


def test_stats_by_role(client, db):
    _seed(db)
    s = client.get("/api/stats", headers=auth(REQUESTER, "requester")).json()
    assert s == {"total": 4, "pending": 1, "in_review": 1, "approved": 1, "rejected": 1}

    s = client.get("/api/stats", headers=auth(APPROVER, "approver")).json()
    assert s["total"] == 3
    assert s["to_review"] == 2


def test_listing_filters(client, db):
    _seed(db)
    h = auth(ADMIN, "admin")
    assert len(client.get("/api/requests", headers=h).json()) == 4
    rows = client.get("/api/requests", params={"status": "approved"}, headers=h).json()
    assert [r["request_id"] for r in rows] == ["TCRS-2025-000002"]
    rows = client.get("/api/requests", params={"q": "000003"}, headers=h).json()
    assert [r["request_id"] for r in rows] == ["TCRS-2025-000003"]
    assert client.get("/api/requests", params={"status": "bogus"}, headers=h).status_code == 400


def test_my_requests_only_own(client, db):
    _seed(db)
    assert len(client.get("/api/requests/my-requests", headers=auth(REQUESTER, "requester")).json()) == 4
    assert client.get("/api/requests/my-requests", headers=auth(APPROVER, "approver")).json() == []


def test_pending_view_joins_invoice(client, db):
    _seed(db)
    rows = client.get("/api/requests/pending", headers=auth(APPROVER, "approver")).json()
    assert [r["request_id"] for r in rows] == ["TCRS-2025-000001"]
    assert rows[0]["vendor"] == "ACME"
    assert rows[0]["amount"] == 1500.0

    r = client.get("/api/requests/pending", params={"email": OTHER_APPROVER}, headers=auth(APPROVER, "approver"))
    assert r.status_code == 403
    r = client.get("/api/requests/pending", params={"email": OTHER_APPROVER, "status": "all"},
                   headers=auth(ADMIN, "admin"))
    assert [x["request_id"] for x in r.json()] == ["TCRS-2025-000003"]


def test_detail_access(client, db, approvers):
    _seed(db)
    rid = "TCRS-2025-000001"
    assert client.get(f"/api/requests/{rid}", headers=auth(REQUESTER, "requester")).status_code == 200
    assert client.get(f"/api/requests/{rid}", headers=auth(BACKUP, "approver")).status_code == 200
    assert client.get(f"/api/requests/{rid}", headers=auth(OTHER_APPROVER, "approver")).status_code == 403
    assert client.get(f"/api/requests/{rid}", headers=auth("stranger@tcrs.test", "requester")).status_code == 403
    assert client.get("/api/requests/TCRS-2025-000404", headers=auth(ADMIN, "admin")).status_code == 404

    body = client.get(f"/api/requests/{rid}", headers=auth(ADMIN, "admin")).json()
    assert body["invoice"]["vendor"] == "ACME"
    assert body["gl_entries"] == []


def test_history_newest_first(client, db):
    rid = make_request(db)
    client.put(f"/api/requests/{rid}/approve", json={"approver": APPROVER}, headers=auth(APPROVER, "approver"))
    rows = client.get(f"/api/requests/{rid}/history", headers=auth(REQUESTER, "requester")).json()
    assert [r["step_code"] for r in rows] == ["approved"]
    assert rows[0]["executed_by"] == APPROVER


def test_export_csv(client, db):
    _seed(db)
    r = client.post("/api/export", json={"status": "approved"}, headers=auth(REQUESTER, "requester"))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    lines = r.text.strip().splitlines()
    assert lines[0].startswith("Request ID,")
    assert len(lines) == 2
    assert lines[1].startswith("TCRS-2025-000002,")


def test_export_nothing_matches(client, db):
    r = client.post("/api/export", json={}, headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400


def test_workflow_steps_catalog(client, db):
    h = auth(REQUESTER, "requester")
    steps = client.get("/api/workflow-steps", headers=h).json()
    codes = {s["step_code"] for s in steps}
    assert {"request_created", "approved", "rejected", "DICT_FACILITY_DELETED"} <= codes
    dict_steps = client.get("/api/workflow-steps", params={"category": "DICTIONARY_MANAGEMENT"}, headers=h).json()
    assert len(dict_steps) == 9


def test_validate_amounts_soft_check(client, db):
    h = auth(REQUESTER, "requester")
    r = client.post("/api/gl-coding/validate-amounts",
                    json={"invoice_amount": 1500, "entries": [{"account_code": "6100", "facility_code": "F", "amount": 1499.99}]},
                    headers=h)
    assert r.status_code == 200
    assert r.json()["is_valid"] is False

    rid = make_request(db)
    r = client.post("/api/gl-coding/validate-amounts",
                    json={"request_id": rid, "entries": [{"account_code": "6100", "facility_code": "F", "amount": 1500}]},
                    headers=h)
    assert r.json()["is_valid"] is True
    assert client.post("/api/gl-coding/validate-amounts", json={"entries": []}, headers=h).status_code == 400


@pytest.mark.parametrize("raw", ["1e309", "NaN", "12345678901.00"])
def test_validate_amounts_refuses_unstorable_amounts(client, db, raw):
    headers = {**auth(REQUESTER, "requester"), "Content-Type": "application/json"}
    body = '{"entries": [{"account_code": "6100", "facility_code": "F01", "amount": %s}], "invoice_amount": 1500}' % raw
    r = client.post("/api/gl-coding/validate-amounts", content=body, headers=headers)
    assert r.status_code == 400, r.text
    assert r.json()["details"] == ["Entry 1: Amount must be a finite number no larger than 9999999999.99"]

    body = '{"entries": [{"account_code": "6100", "facility_code": "F01", "amount": 1500}], "invoice_amount": %s}' % raw
    r = client.post("/api/gl-coding/validate-amounts", content=body, headers=headers)
    assert r.status_code == 400
    assert r.json()["details"] == ["Invoice amount must be a finite number no larger than 9999999999.99"]


def test_save_entries_replaces_lines(client, db):
    rid = make_request(db)
    h = auth(REQUESTER, "requester")
    entries = [{"account_code": "6100", "facility_code": "F1", "amount": 1000},
               {"account_code": "6200", "facility_code": "F2", "amount": 500}]
    r = client.post("/api/gl-coding/save-entries", json={"request_id": rid, "entries": entries}, headers=h)
    assert r.status_code == 200, r.text
    assert r.json()["entry_count"] == 2

    r = client.post("/api/gl-coding/save-entries",
                    json={"request_id": rid, "entries": [{"account_code": "6300", "facility_code": "F3", "amount": 1500}]},
                    headers=h)
    assert r.status_code == 200

    got = client.get(f"/api/gl-coding/{rid}", headers=h).json()
    assert [e["account_code"] for e in got["entries"]] == ["6300"]
    assert db.query(GLCodingUpload).filter_by(request_id=rid).count() == 1
    assert db.query(WorkflowHistory).filter_by(request_id=rid).count() == 2


def test_save_entries_hard_checks(client, db):
    rid = make_request(db)
    h = auth(REQUESTER, "requester")
    bad = [{"account_code": "6100", "facility_code": "F1", "amount": 1499.99}]
    assert client.post("/api/gl-coding/save-entries", json={"request_id": rid, "entries": bad},
                       headers=h).status_code == 400

    done = make_request(db, "TCRS-2025-000009", status="approved")
    ok = [{"account_code": "6100", "facility_code": "F1", "amount": 1500}]
    assert client.post("/api/gl-coding/save-entries", json={"request_id": done, "entries": ok},
                       headers=h).status_code == 400
    assert db.query(GLCodingEntry).count() == 0


def test_gl_pick_lists(client, db):
    client.post("/api/admin/dictionaries/accounts", json={"account_code": "6100", "account_description": "Repairs"},
                headers=auth(ADMIN, "admin"))
    body = client.get("/api/gl-coding/dictionaries", headers=auth(REQUESTER, "requester")).json()
    assert body["accounts"] == [{"code": "6100", "description": "Repairs", "combined": "6100 - Repairs"}]
    assert body["facilities"] == []


def test_pdf_upload_and_download(client, db, storage):
    h = auth(REQUESTER, "requester")
    r = client.post("/api/invoices/upload-pdf",
                    files={"file": ("my invoice.pdf", b"%PDF-1.4", "application/pdf")}, headers=h)
    assert r.status_code == 200, r.text
    name = r.json()["blob_name"]
    assert name.startswith("invoices/TEMP-") and name.endswith("_my_invoice.pdf")
    assert storage.blobs[name] == b"%PDF-1.4"

    rid = make_request(db)
    inv = db.query(InvoiceData).filter_by(request_id=rid).one()
    inv.blob_url = storage.url(f"pdf/{rid}/invoice.pdf")
    db.commit()
    r = client.get("/api/invoices/download-pdf", params={"request_id": rid}, headers=h)
    assert r.status_code == 200
    assert r.json()["sas_url"].startswith(storage.url(f"pdf/{rid}/invoice.pdf") + "?")


def test_pdf_upload_rejects_other_types(client, db):
    r = client.post("/api/invoices/upload-pdf",
                    files={"file": ("notes.txt", b"hello", "text/plain")}, headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400


def test_download_without_pdf_is_404(client, db):
    rid = make_request(db)
    r = client.get("/api/invoices/download-pdf", params={"request_id": rid}, headers=auth(REQUESTER, "requester"))
    assert r.status_code == 404


def test_email_case_does_not_change_access(client, db, approvers):
    rid = make_request(db)
    h = auth(APPROVER.upper(), "approver")
    assert client.get(f"/api/requests/{rid}", headers=h).status_code == 200
    assert [r["request_id"] for r in client.get("/api/requests", headers=h).json()] == [rid]
    assert [r["request_id"] for r in client.get("/api/requests/pending", headers=h).json()] == [rid]
    assert client.get(f"/api/requests/{rid}", headers=auth(BACKUP.upper(), "approver")).status_code == 200
    assert client.get(f"/api/requests/{rid}", headers=auth(OTHER_APPROVER.upper(), "approver")).status_code == 403
    mine = client.get("/api/requests/my-requests", headers=auth(REQUESTER.upper(), "requester")).json()
    assert [r["request_id"] for r in mine] == [rid]

    r = client.put(f"/api/requests/{rid}/approve", json={"approver": APPROVER}, headers=h)
    assert r.status_code == 200, r.text

import json

import pytest

from tcrs_approval.core.config import XLSX_MIME_TYPE as XLSX
from tcrs_approval.models import (
    ApprovalRequest, GLCodingEntry, GLCodingUpload, InvoiceData, WorkflowHistory, WorkflowStep,
)
from tcrs_approval.services.request_ids import REQUEST_ID_RE
from tests.conftest import APPROVER, OTHER_APPROVER, REQUESTER, auth


def _payload(amount=1500.0, entries=None, **invoice):
    inv = {"company": "TCRS", "branch": "Calgary", "vendor": "ACME", "po": "PO-1",
           "amount": amount, "currency": "CAD"}
    inv.update(invoice)
    if entries is None:
        entries = [
            {"account_code": "6100", "facility_code": "F01", "amount": 1000},
            {"account_code": "6200", "facility_code": "F02", "amount": 500},
        ]
    return {"invoice": inv, "entries": entries}


def test_create_persists_everything_with_one_history_row(client, db, approvers):
    r = client.post("/api/requests", json=_payload(), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201, r.text
    body = r.json()
    rid = body["request_id"]
    assert REQUEST_ID_RE.match(rid)
    assert body["status"] == "pending"
    assert body["entry_count"] == 2
    assert body["warnings"] == []
    # smallest authorized amount covering 1500 on the branch
    assert body["assigned_approver"] == APPROVER

    assert db.get(ApprovalRequest, rid).requester == REQUESTER
    assert db.query(InvoiceData).filter_by(request_id=rid).count() == 1
    upload = db.query(GLCodingUpload).filter_by(request_id=rid).one()
    assert db.query(GLCodingEntry).filter_by(upload_id=upload.upload_id).count() == 2
    assert db.query(WorkflowHistory).filter_by(request_id=rid).count() == 1


def test_large_invoice_goes_to_higher_limit_approver(client, db, approvers):
    r = client.post("/api/requests",
                    json=_payload(amount=20000, entries=[{"account_code": "6100", "facility_code": "F01", "amount": 20000}]),
                    headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    assert r.json()["assigned_approver"] == OTHER_APPROVER


def test_explicit_approver_wins(client, db, approvers):
    r = client.post("/api/requests", json=_payload(approver="chosen@tcrs.test"),
                    headers=auth(REQUESTER, "requester"))
    assert r.json()["assigned_approver"] == "chosen@tcrs.test"


def test_unassigned_when_no_rule_matches(client, db):
    r = client.post("/api/requests", json=_payload(branch="Nowhere"), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    assert r.json()["assigned_approver"] is None


def test_amount_mismatch_rejected_and_nothing_written(client, db):
    entries = [{"account_code": "6100", "facility_code": "F01", "amount": 1499.99}]
    r = client.post("/api/requests", json=_payload(entries=entries), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400
    assert "does not match" in r.json()["detail"]
    assert db.query(ApprovalRequest).count() == 0
    assert db.query(WorkflowHistory).count() == 0


def test_entry_errors_are_listed(client, db):
    entries = [{"account_code": "6100", "facility_code": "F01", "amount": 1500},
               {"account_code": "", "facility_code": "F01", "amount": 0}]
    r = client.post("/api/requests", json=_payload(entries=entries), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400
    assert "Entry 2: Account code is required" in r.json()["details"]


def test_empty_entries_rejected(client, db):
    r = client.post("/api/requests", json=_payload(entries=[]), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400


def test_zero_invoice_amount_rejected(client, db):
    entries = [{"account_code": "6100", "facility_code": "F01", "amount": 10}]
    r = client.post("/api/requests", json=_payload(amount=0, entries=entries), headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400


def test_approver_role_cannot_create(client, db):
    r = client.post("/api/requests", json=_payload(), headers=auth(APPROVER, "approver"))
    assert r.status_code == 403


def test_uploaded_pdf_is_moved_under_request(client, db, storage):
    storage.upload("invoices/TEMP-abc_invoice.pdf", b"%PDF-1.4 data", "application/pdf")
    r = client.post("/api/requests", json=_payload(pdf_blob_name="invoices/TEMP-abc_invoice.pdf"),
                    headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    body = r.json()
    rid = body["request_id"]
    assert body["warnings"] == []
    assert body["files"][0]["status"] == "done"
    assert f"pdf/{rid}/invoice.pdf" in storage.blobs
    assert "invoices/TEMP-abc_invoice.pdf" not in storage.blobs
    inv = db.query(InvoiceData).filter_by(request_id=rid).one()
    assert inv.blob_url.endswith(f"pdf/{rid}/invoice.pdf")


def test_failed_rename_becomes_warning(client, db, storage):
    storage.upload("invoices/TEMP-abc_invoice.pdf", b"%PDF-1.4 data", "application/pdf")
    storage.fail_on.add("copy")
    r = client.post("/api/requests", json=_payload(pdf_blob_name="invoices/TEMP-abc_invoice.pdf"),
                    headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    body = r.json()
    assert body["warnings"] == ["PDF file may not be properly linked"]
    assert body["files"][0]["status"] == "failed"
    assert db.get(ApprovalRequest, body["request_id"]) is not None


def test_missing_storage_becomes_warning(client, db):
    client.app.state.blob_storage = None
    r = client.post("/api/requests", json=_payload(pdf_blob_name="invoices/TEMP-x_a.pdf"),
                    headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    assert r.json()["warnings"] == ["PDF file may not be properly linked"]


def _raw_amount_body(raw):
    body = json.dumps(_payload(entries=[{"account_code": "6100", "facility_code": "F01", "amount": "@"}]))
    return body.replace('"@"', raw)


@pytest.mark.parametrize("raw", ["1e309", "NaN", "12345678901.00"])
def test_unstorable_line_amount_is_a_400(client, db, raw):
    headers = {**auth(REQUESTER, "requester"), "Content-Type": "application/json"}
    r = client.post("/api/requests", content=_raw_amount_body(raw), headers=headers)
    assert r.status_code == 400, r.text
    assert r.json()["details"] == ["Entry 1: Amount must be a finite number no larger than 9999999999.99"]
    assert db.query(ApprovalRequest).count() == 0


def test_unstorable_invoice_amount_is_a_400(client, db):
    body = json.dumps(_payload(amount="@")).replace('"@"', "1e309")
    headers = {**auth(REQUESTER, "requester"), "Content-Type": "application/json"}
    r = client.post("/api/requests", content=body, headers=headers)
    assert r.status_code == 400
    assert "Invoice amount must be a finite number" in r.json()["detail"]


def _steps(db, rid):
    return sorted(
        s.step_code
        for _, s in db.query(WorkflowHistory, WorkflowStep)
        .join(WorkflowStep, WorkflowStep.step_id == WorkflowHistory.step_id)
        .filter(WorkflowHistory.request_id == rid)
        .all()
    )


def test_uploaded_excel_is_linked_and_storage_step_recorded(client, db, storage):
    h = auth(REQUESTER, "requester")
    r = client.post("/api/gl-coding/upload-excel",
                    files={"file": ("coding.xlsx", b"PK\x03\x04", XLSX)}, headers=h)
    assert r.status_code == 200, r.text
    temp = r.json()["blob_name"]
    assert temp.startswith("gl-coding/") and "/TEMP-" in temp and temp.endswith("_coding.xlsx")

    r = client.post("/api/requests", json=_payload(excel_blob_name=temp), headers=h)
    assert r.status_code == 201, r.text
    body = r.json()
    rid = body["request_id"]
    assert body["warnings"] == []
    assert f"excel/{rid}/coding.xlsx" in storage.blobs
    assert temp not in storage.blobs

    upload = db.query(GLCodingUpload).filter_by(request_id=rid).one()
    assert upload.uploaded_file is True
    assert upload.blob_url.endswith(f"excel/{rid}/coding.xlsx")
    assert _steps(db, rid) == ["documents_stored", "request_created"]


def test_failed_rename_records_no_storage_step(client, db, storage):
    storage.upload("invoices/TEMP-abc_invoice.pdf", b"%PDF-1.4 data", "application/pdf")
    storage.fail_on.add("copy")
    r = client.post("/api/requests", json=_payload(pdf_blob_name="invoices/TEMP-abc_invoice.pdf"),
                    headers=auth(REQUESTER, "requester"))
    assert r.status_code == 201
    assert _steps(db, r.json()["request_id"]) == ["request_created"]


def test_excel_upload_rejects_other_types(client, db):
    r = client.post("/api/gl-coding/upload-excel",
                    files={"file": ("coding.csv", b"a,b", "text/csv")}, headers=auth(REQUESTER, "requester"))
    assert r.status_code == 400
    assert "Excel" in r.json()["detail"]

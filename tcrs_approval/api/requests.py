from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tcrs_approval.core.database import get_db
from tcrs_approval.core.errors import AuthorizationError
from tcrs_approval.crud import decision as decision_crud
from tcrs_approval.crud import request as request_crud
from tcrs_approval.crud.gl_coding import entry_to_dict, get_entries
from tcrs_approval.deps.auth import CurrentUser, get_current_user, require_role
from tcrs_approval.deps.storage import get_blob_storage
from tcrs_approval.services.blob_rename import describe
from tcrs_approval.services.request_ids import RequestIdGenerator, get_request_id_generator

router = APIRouter(prefix="/api/requests", tags=["requests"])


class GLEntryIn(BaseModel):
    account_code: str = ""
    facility_code: str = ""
    tax_code: Optional[str] = None
    amount: float = 0
    equipment: Optional[str] = None
    comments: Optional[str] = None


class InvoiceIn(BaseModel):
    company: str
    branch: Optional[str] = None
    vendor: str
    po: Optional[str] = None
    amount: float
    currency: str = "CAD"
    approver: Optional[str] = None
    description: Optional[str] = None
    pdf_blob_name: Optional[str] = None
    pdf_original_name: Optional[str] = None
    excel_blob_name: Optional[str] = None
    excel_original_name: Optional[str] = None


class CreateRequestIn(BaseModel):
    invoice: InvoiceIn
    entries: List[GLEntryIn] = Field(default_factory=list)


class DecisionIn(BaseModel):
    approver: Optional[str] = None
    comments: Optional[str] = None


class RequestSummary(BaseModel):
    request_id: str
    requester: Optional[str] = None
    assigned_approver: Optional[str] = None
    approver_status: str
    approved_date: Optional[datetime] = None
    comments: Optional[str] = None
    created_date: datetime
    modified_date: Optional[datetime] = None
    class Config:
        from_attributes = True


def _summaries(rows) -> List[RequestSummary]:
    return [RequestSummary.model_validate(r) for r in rows]


@router.post("", response_model=dict, status_code=201)
def create_request(body: CreateRequestIn,
                   db: Session = Depends(get_db),
                   ids: RequestIdGenerator = Depends(get_request_id_generator),
                   storage=Depends(get_blob_storage),
                   user: CurrentUser = Depends(require_role("requester", "admin"))):
    out = request_crud.create_request(
        db, ids, user.email,
        body.invoice.model_dump(),
        [e.model_dump() for e in body.entries],
        storage,
    )
    return {
        "success": True,
        "request_id": out.request.request_id,
        "status": out.request.approver_status,
        "assigned_approver": out.request.assigned_approver,
        "entry_count": out.entry_count,
        "audit_recorded": out.audit_recorded,
        "files": describe(out.renames),
        "warnings": out.warnings,
    }


@router.get("", response_model=List[RequestSummary])
def list_requests(status: Optional[str] = None, q: Optional[str] = None,
                  db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return _summaries(request_crud.search_requests(db, user.email, user.role, status, q))


@router.get("/my-requests", response_model=List[RequestSummary])
def my_requests(status: Optional[str] = None,
                db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return _summaries(request_crud.requests_by_requester(db, user.email, status))


@router.get("/pending", response_model=List[dict])
def approver_requests(email: Optional[str] = None, status: Optional[str] = "pending",
                      db: Session = Depends(get_db),
                      user: CurrentUser = Depends(require_role("approver", "admin"))):
    target = (email or user.email).strip()
    if not request_crud.same_email(target, user.email) and not user.is_admin:
        raise AuthorizationError("You can only view your own approval queue")
    return request_crud.approver_requests_with_details(db, target, status)


@router.get("/{request_id}", response_model=dict)
def get_request(request_id: str, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    req = request_crud.get_request_for_user(db, request_id, user.email, user.role)
    inv = request_crud.get_invoice(db, request_id)
    return {
        "request": RequestSummary.model_validate(req).model_dump(),
        "invoice": None if not inv else {
            "company": inv.company,
            "branch": inv.branch,
            "vendor": inv.vendor,
            "po": inv.po,
            "amount": float(inv.amount) if inv.amount is not None else 0.0,
            "currency": inv.currency,
            "approver": inv.approver,
            "blob_url": inv.blob_url,
        },
        "gl_entries": [entry_to_dict(e) for e in get_entries(db, request_id)],
    }


@router.get("/{request_id}/history", response_model=List[dict])
def request_history(request_id: str, db: Session = Depends(get_db),
                    user: CurrentUser = Depends(get_current_user)):
    request_crud.get_request_for_user(db, request_id, user.email, user.role)
    return request_crud.workflow_timeline(db, request_id)


def _decision_response(req, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "request_id": req.request_id,
        "status": req.approver_status,
        "approved_date": req.approved_date,
        "comments": req.comments,
    }


# role is checked inside the decision flow so the 403 wording matches the action
@router.put("/{request_id}/approve", response_model=dict)
def approve(request_id: str, body: DecisionIn,
            db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    req = decision_crud.approve_request(db, request_id, user.email, user.role, body.approver, body.comments)
    return _decision_response(req, "Request approved successfully")


@router.put("/{request_id}/reject", response_model=dict)
def reject(request_id: str, body: DecisionIn,
           db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    req = decision_crud.reject_request(db, request_id, user.email, user.role, body.approver, body.comments)
    return _decision_response(req, "Request rejected successfully")

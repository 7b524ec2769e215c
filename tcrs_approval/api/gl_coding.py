import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tcrs_approval.api.invoices import require_storage, temp_blob_name
from tcrs_approval.api.requests import GLEntryIn
from tcrs_approval.core.config import EXCEL_EXTENSIONS, EXCEL_MAX_SIZE, XLSX_MIME_TYPE
from tcrs_approval.core.database import get_db
from tcrs_approval.core.errors import ValidationError
from tcrs_approval.crud import gl_coding as gl_crud
from tcrs_approval.crud.request import get_invoice, get_request_for_user
from tcrs_approval.deps.auth import CurrentUser, get_current_user, require_role
from tcrs_approval.deps.storage import get_blob_storage
from tcrs_approval.utils.amounts import MAX_AMOUNT, out_of_range, range_errors, validate_amounts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gl-coding", tags=["gl-coding"])


class SaveEntriesIn(BaseModel):
    request_id: str
    entries: List[GLEntryIn] = Field(default_factory=list)


class ValidateAmountsIn(BaseModel):
    entries: List[GLEntryIn] = Field(default_factory=list)
    invoice_amount: Optional[float] = None
    request_id: Optional[str] = None


@router.get("/dictionaries", response_model=dict)
def gl_dictionaries(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return gl_crud.pick_lists(db)


@router.post("/validate-amounts", response_model=dict)
def validate(body: ValidateAmountsIn, db: Session = Depends(get_db),
             user: CurrentUser = Depends(get_current_user)):
    """Soft check used by the form while editing; only amounts that cannot be stored are refused."""
    amount = body.invoice_amount
    if amount is None and body.request_id:
        get_request_for_user(db, body.request_id, user.email, user.role)
        inv = get_invoice(db, body.request_id)
        amount = inv.amount if inv else None
    if amount is None:
        raise ValueError("invoice_amount or request_id is required")
    entries = [e.model_dump() for e in body.entries]
    errors = range_errors(entries)
    if out_of_range(amount):
        errors.append(f"Invoice amount must be a finite number no larger than {MAX_AMOUNT}")
    if errors:
        raise ValidationError("Invalid amount", details=errors)
    return validate_amounts(entries, amount).as_dict()


@router.post("/save-entries", response_model=dict)
def save_entries(body: SaveEntriesIn, db: Session = Depends(get_db),
                 user: CurrentUser = Depends(require_role("requester", "admin"))):
    req = get_request_for_user(db, body.request_id, user.email, user.role)
    rows = gl_crud.save_entries(db, req.request_id, [e.model_dump() for e in body.entries], user.email)
    return {
        "success": True,
        "request_id": req.request_id,
        "entry_count": len(rows),
        "entries": [gl_crud.entry_to_dict(e) for e in rows],
    }


@router.get("/{request_id}", response_model=dict)
def get_gl_coding(request_id: str, db: Session = Depends(get_db),
                  user: CurrentUser = Depends(get_current_user)):
    get_request_for_user(db, request_id, user.email, user.role)
    entries = gl_crud.get_entries(db, request_id)
    upload = gl_crud.latest_upload(db, request_id)
    return {
        "request_id": request_id,
        "upload_id": upload.upload_id if upload else None,
        "uploaded_file": bool(upload and upload.uploaded_file),
        "blob_url": upload.blob_url if upload else None,
        "entries": [gl_crud.entry_to_dict(e) for e in entries],
    }


@router.post("/upload-excel", response_model=dict)
async def upload_excel(file: UploadFile = File(None), upload_type: str = Form("temp"),
                       storage=Depends(get_blob_storage),
                       user: CurrentUser = Depends(require_role("requester", "admin"))):
    """Store a GL-coding workbook under a temporary name until the request is created."""
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    if not file.filename.lower().endswith(EXCEL_EXTENSIONS):
        raise ValidationError("Only Excel files (.xlsx, .xls) are allowed")
    data = await file.read()
    if len(data) > EXCEL_MAX_SIZE:
        raise ValidationError(f"File size must be less than {EXCEL_MAX_SIZE // (1024 * 1024)}MB")

    storage = require_storage(storage)
    now = datetime.utcnow()
    temp_id, blob_name = temp_blob_name(file.filename, f"gl-coding/{now:%Y}/{now:%m}")
    url = storage.upload(blob_name, data, file.content_type or XLSX_MIME_TYPE, metadata={
        "uploadType": upload_type,
        "originalFileName": file.filename,
        "uploadedAt": now.isoformat(),
        "uploadedBy": user.email,
        "tempId": temp_id,
        "status": "temporary",
        "contentType": "gl-coding",
    })
    logger.info("excel %s uploaded by %s as %s", file.filename, user.email, blob_name)
    return {
        "blob_url": url,
        "blob_name": blob_name,
        "original_file_name": file.filename,
        "size": len(data),
        "temp_id": temp_id,
        "year": now.year,
        "month": now.month,
    }

import logging
import re
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from tcrs_approval.core.config import PDF_MAX_SIZE, PDF_MIME_TYPE, SAS_TTL_MIN
from tcrs_approval.core.database import get_db
from tcrs_approval.core.errors import NotFoundError, ServiceUnavailableError, ValidationError
from tcrs_approval.crud.request import get_invoice, get_request_for_user
from tcrs_approval.deps.auth import CurrentUser, get_current_user, require_role
from tcrs_approval.deps.storage import get_blob_storage
from tcrs_approval.utils.blob_storage import blob_name_from_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def require_storage(storage):
    if storage is None:
        raise ServiceUnavailableError("File storage is not configured")
    return storage


def temp_blob_name(filename: str, folder: str = "invoices") -> tuple[str, str]:
    temp_id = uuid.uuid4().hex[:12]
    return temp_id, f"{folder}/TEMP-{temp_id}_{_UNSAFE_CHARS.sub('_', filename)}"


@router.post("/upload-pdf", response_model=dict)
async def upload_pdf(file: UploadFile = File(None), context: str = Form("direct"),
                     storage=Depends(get_blob_storage),
                     user: CurrentUser = Depends(require_role("requester", "admin"))):
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    if file.content_type != PDF_MIME_TYPE:
        raise ValidationError("Only PDF files are allowed")
    data = await file.read()
    if len(data) > PDF_MAX_SIZE:
        raise ValidationError(f"File size must be less than {PDF_MAX_SIZE // (1024 * 1024)}MB")

    storage = require_storage(storage)
    temp_id, blob_name = temp_blob_name(file.filename)
    url = storage.upload(blob_name, data, PDF_MIME_TYPE, metadata={
        "context": context,
        "originalFileName": file.filename,
        "uploadedAt": datetime.utcnow().isoformat(),
        "uploadedBy": user.email,
        "tempId": temp_id,
    })
    logger.info("pdf %s uploaded by %s as %s", file.filename, user.email, blob_name)
    return {
        "blob_url": url,
        "blob_name": blob_name,
        "original_file_name": file.filename,
        "size": len(data),
        "temp_id": temp_id,
    }


@router.get("/download-pdf", response_model=dict)
def download_pdf(request_id: str = "", db: Session = Depends(get_db),
                 storage=Depends(get_blob_storage), user: CurrentUser = Depends(get_current_user)):
    if not request_id.strip():
        raise ValidationError("request_id is required")
    get_request_for_user(db, request_id, user.email, user.role)
    inv = get_invoice(db, request_id)
    if not inv or not inv.blob_url:
        raise NotFoundError("No PDF stored for this request")
    storage = require_storage(storage)
    name = blob_name_from_url(inv.blob_url, storage.container_name)
    return {
        "request_id": request_id,
        "sas_url": storage.sas_url(name, SAS_TTL_MIN),
        "expires_in": SAS_TTL_MIN,
    }

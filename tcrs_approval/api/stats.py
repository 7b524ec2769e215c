import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tcrs_approval.core.database import get_db
from tcrs_approval.core.errors import ValidationError
from tcrs_approval.crud.request import export_rows, request_stats
from tcrs_approval.deps.auth import CurrentUser, get_current_user
from tcrs_approval.utils.export import content_disposition, export_filename, requests_to_csv

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])


class ExportIn(BaseModel):
    status: Optional[str] = None
    q: Optional[str] = None


@router.get("/api/stats", response_model=dict)
def stats(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return request_stats(db, user.email, user.role)


@router.post("/api/export")
def export(body: ExportIn, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    rows = export_rows(db, user.email, user.role, body.status, body.q)
    if not rows:
        raise ValidationError("No requests match the selected filters")
    csv_text = requests_to_csv(rows)
    logger.info("exported %d requests for %s", len(rows), user.email)
    return StreamingResponse(
        io.BytesIO(csv_text.encode("utf-8")),
        media_type="text/csv",
        headers=content_disposition(export_filename()),
    )

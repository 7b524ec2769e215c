from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tcrs_approval.core.database import get_db
from tcrs_approval.deps.auth import get_current_user
from tcrs_approval.services.workflow_catalog import list_steps

router = APIRouter(tags=["workflow"])


class WorkflowStepOut(BaseModel):
    step_id: int
    step_code: str
    step_name: str
    step_description: Optional[str] = None
    step_category: str
    step_order: Optional[int] = None
    is_user_action: Optional[bool] = None
    is_robot_action: Optional[bool] = None
    is_system_action: Optional[bool] = None
    expected_duration_ms: Optional[int] = None
    is_critical: Optional[bool] = None
    requires_approval: Optional[bool] = None
    created_date: datetime
    class Config:
        from_attributes = True


@router.get("/api/workflow-steps", response_model=List[WorkflowStepOut])
def workflow_steps(category: Optional[str] = None, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return [WorkflowStepOut.model_validate(s) for s in list_steps(db, category)]

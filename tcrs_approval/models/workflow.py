from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text, Index
from datetime import datetime

from tcrs_approval.core.database import Base
from tcrs_approval.models.request import _new_id


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"
    step_id = Column(Integer, primary_key=True, autoincrement=True)
    step_code = Column(String(255), nullable=False, unique=True)   # e.g. request_created, DICT_ACCOUNT_UPDATED
    step_name = Column(String(255), nullable=False)
    step_description = Column(Text)
    step_category = Column(String(100), nullable=False)
    step_order = Column(Integer)
    is_user_action = Column(Boolean, default=False)
    is_robot_action = Column(Boolean, default=False)
    is_system_action = Column(Boolean, default=False)
    expected_duration_ms = Column(Integer)
    is_critical = Column(Boolean, default=False)
    requires_approval = Column(Boolean, default=False)
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_date = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_workflow_steps_category_order", "step_category", "step_order"),
    )


class WorkflowHistory(Base):
    """Append-only: rows are inserted by services.audit and never touched again."""
    __tablename__ = "workflow_history"
    history_id = Column(String(255), primary_key=True, default=_new_id)
    request_id = Column(String(255), nullable=False)               # request id or DICT-<TYPE>-<id>
    step_id = Column(Integer, ForeignKey("workflow_steps.step_id"), nullable=False)
    executed_by = Column(String(255))
    executed_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    duration = Column(Integer, nullable=True)
    success = Column(Boolean, default=True)
    error_code = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    related_entity_id = Column(String(255), nullable=True)
    related_entity_type = Column(String(100), nullable=True)
    previous_value = Column(Text, nullable=True)                   # JSON snapshot
    new_value = Column(Text, nullable=True)                        # JSON snapshot
    created_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_workflow_timeline", "request_id", "executed_date"),
        Index("idx_workflow_step_monitoring", "step_id", "executed_date"),
        Index("idx_workflow_errors", "success", "error_code", "executed_date"),
        Index("idx_workflow_audit", "executed_date"),
    )

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.core.config import AUDIT_MIRROR_ENABLED
from tcrs_approval.metrics import audit_failures_total
from tcrs_approval.models.workflow import WorkflowHistory, WorkflowStep
from tcrs_approval.services.workflow_catalog import (
    DICTIONARY_ACTIONS, DICTIONARY_ENTITY_TYPES, dictionary_step_code,
)
from tcrs_approval.utils.audit_sink import write_event

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_audit_events"


@dataclass
class AuditResult:
    """Outcome of a workflow-history write. Callers decide whether to care."""
    ok: bool
    history: Optional[WorkflowHistory] = None
    error: Optional[str] = None       # "step_not_found" | "insert_failed"


def _serialize(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


def _build_history(step_id: int, request_id: str, executed_by: Optional[str], **fields: Any) -> WorkflowHistory:
    return WorkflowHistory(
        request_id=request_id,
        step_id=step_id,
        executed_by=executed_by,
        executed_date=datetime.utcnow(),
        **fields,
    )


def record_workflow_step(
    db: Session,
    request_id: str,
    step_code: str,
    executed_by: Optional[str],
    *,
    success: bool = True,
    error_code: Optional[str] = None,
    notes: Optional[str] = None,
    duration: Optional[int] = None,
    related_entity_id: Optional[str] = None,
    related_entity_type: Optional[str] = None,
    previous_value: Any = None,
    new_value: Any = None,
) -> AuditResult:
    """
    Append one workflow_history row inside a SAVEPOINT of the caller's transaction.

    Never raises: an unknown step code or a failed insert is reported in the
    returned AuditResult and the caller's own changes stay intact. The caller
    still owns the commit.
    """
    step_id = None
    row = None
    try:
        with db.begin_nested():
            step_id = (
                db.query(WorkflowStep.step_id)
                .filter(WorkflowStep.step_code == step_code)
                .scalar()
            )
            if step_id is not None:
                row = _build_history(
                    step_id, request_id, executed_by,
                    success=success,
                    error_code=error_code,
                    notes=notes,
                    duration=duration,
                    related_entity_id=related_entity_id,
                    related_entity_type=related_entity_type,
                    previous_value=_serialize(previous_value),
                    new_value=_serialize(new_value),
                )
                db.add(row)
    except SQLAlchemyError as e:
        logger.warning("workflow history insert failed request=%s step=%s: %s", request_id, step_code, e)
        audit_failures_total.labels(reason="insert_failed").inc()
        return AuditResult(ok=False, error="insert_failed")

    if step_id is None:
        logger.warning("workflow step not found: %s (request=%s)", step_code, request_id)
        audit_failures_total.labels(reason="step_not_found").inc()
        return AuditResult(ok=False, error="step_not_found")

    db.info.setdefault(_PENDING_KEY, []).append({
        "history_id": row.history_id,
        "request_id": row.request_id,
        "step_code": step_code,
        "executed_by": row.executed_by,
        "executed_date": row.executed_date.isoformat(),
        "success": row.success,
        "error_code": row.error_code,
        "notes": row.notes,
    })
    return AuditResult(ok=True, history=row)


def dictionary_request_key(entity_type: str, entity_id: str) -> str:
    return f"DICT-{entity_type.upper()}-{entity_id}"


def record_dictionary_change(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: str,
    actor: Optional[str],
    previous: Optional[Dict[str, Any]] = None,
    new: Optional[Dict[str, Any]] = None,
    notes: Optional[str] = None,
) -> AuditResult:
    """Log a CREATED/UPDATED/DELETED edit of an approver, account or facility row."""
    action = action.upper()
    entity_type = entity_type.upper()
    if action not in DICTIONARY_ACTIONS or entity_type not in DICTIONARY_ENTITY_TYPES:
        logger.warning("unknown dictionary audit action=%s type=%s", action, entity_type)
        audit_failures_total.labels(reason="step_not_found").inc()
        return AuditResult(ok=False, error="step_not_found")
    return record_workflow_step(
        db,
        dictionary_request_key(entity_type, entity_id),
        dictionary_step_code(entity_type, action),
        actor,
        notes=notes,
        related_entity_id=str(entity_id),
        related_entity_type=entity_type,
        previous_value=previous,
        new_value=new,
    )


# Mirror committed history rows to the JSONL sink; rolled-back rows are dropped.
# SAVEPOINT release/rollback also dispatches these events, so only the outermost
# transaction counts.
@event.listens_for(Session, "after_commit")
def _flush_audit_mirror(session: Session) -> None:
    if session.in_nested_transaction():
        return
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending or not AUDIT_MIRROR_ENABLED:
        return
    for ev in pending:
        write_event(ev)


@event.listens_for(Session, "after_rollback")
def _drop_audit_mirror(session: Session) -> None:
    if session.in_nested_transaction():
        return
    session.info.pop(_PENDING_KEY, None)

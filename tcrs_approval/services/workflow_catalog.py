"""
Static catalog of workflow step codes.

The catalog is seeded once (idempotently) at startup; afterwards the
``workflow_steps`` table is read-only reference data that the audit logger
resolves step codes against.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from tcrs_approval.models.workflow import WorkflowStep

logger = logging.getLogger(__name__)

REQUEST_CREATED = "request_created"
APPROVED = "approved"
REJECTED = "rejected"
GL_CODING_SAVED = "gl_coding_saved"
DOCUMENTS_STORED = "documents_stored"

DICTIONARY_CATEGORY = "DICTIONARY_MANAGEMENT"
DICTIONARY_ENTITY_TYPES = ("APPROVER", "ACCOUNT", "FACILITY")
DICTIONARY_ACTIONS = ("CREATED", "UPDATED", "DELETED")


def _step(code: str, name: str, description: str, category: str, order: int,
          actor: str, duration_ms: int = 0, critical: bool = False,
          requires_approval: bool = False) -> Dict[str, Any]:
    return {
        "step_code": code,
        "step_name": name,
        "step_description": description,
        "step_category": category,
        "step_order": order,
        "is_user_action": actor == "user",
        "is_robot_action": actor == "robot",
        "is_system_action": actor == "system",
        "expected_duration_ms": duration_ms,
        "is_critical": critical,
        "requires_approval": requires_approval,
    }


REQUEST_STEPS: List[Dict[str, Any]] = [
    _step(REQUEST_CREATED, "Request Created", "Initial request submitted by user", "submission", 10, "user"),
    _step("validation_started", "Validation Started", "System begins validation of request data", "validation", 20, "robot", 500, critical=True),
    _step("approver_assigned", "Approver Assigned", "System assigns appropriate approver based on rules", "assignment", 30, "robot", 200, critical=True),
    _step("validation_passed", "Validation Passed", "All validation checks completed successfully", "validation", 40, "robot", 1000, critical=True),
    _step("pending_approval", "Pending Approval", "Request waiting for approver action", "approval", 50, "none", requires_approval=True),
    _step(APPROVED, "Request Approved", "Approver has approved the request", "approval", 60, "user"),
    _step(REJECTED, "Request Rejected", "Approver has rejected the request", "approval", 65, "user"),
    _step(GL_CODING_SAVED, "GL Coding Saved", "GL-coding entries replaced for the request", "submission", 70, "user"),
    _step(DOCUMENTS_STORED, "Documents Stored", "Invoice documents moved to their final location", "storage", 110, "system"),
    _step("notification_sent", "Notification Sent", "Stakeholders notified of the outcome", "notification", 120, "system"),
    _step("workflow_completed", "Workflow Completed", "Request processing finished", "completion", 130, "system"),
    _step("workflow_failed", "Workflow Failed", "Request processing aborted", "completion", 140, "system", critical=True),
]


def dictionary_step_code(entity_type: str, action: str) -> str:
    return f"DICT_{entity_type.upper()}_{action.upper()}"


def _dictionary_steps() -> List[Dict[str, Any]]:
    out = []
    order = 1
    for entity in DICTIONARY_ENTITY_TYPES:
        for action in DICTIONARY_ACTIONS:
            label = entity.capitalize()
            verb = {"CREATED": "created in", "UPDATED": "modified in", "DELETED": "removed from"}[action]
            out.append(_step(
                dictionary_step_code(entity, action),
                f"{label} {action.capitalize()}",
                f"{label} entry {verb} dictionary",
                DICTIONARY_CATEGORY,
                order,
                "user",
                1000,
                critical=(action == "DELETED"),
            ))
            order += 1
    return out


DICTIONARY_STEPS = _dictionary_steps()
ALL_STEPS = REQUEST_STEPS + DICTIONARY_STEPS


def seed_workflow_steps(db: Session) -> int:
    """Insert catalog entries whose step_code is not stored yet. Returns the number inserted."""
    existing = {code for (code,) in db.query(WorkflowStep.step_code).all()}
    added = 0
    for entry in ALL_STEPS:
        if entry["step_code"] in existing:
            continue
        db.add(WorkflowStep(**entry))
        added += 1
    if added:
        db.commit()
        logger.info("seeded %d workflow steps", added)
    return added


def list_steps(db: Session, category: str | None = None) -> List[WorkflowStep]:
    q = db.query(WorkflowStep)
    if category:
        q = q.filter(WorkflowStep.step_category == category)
    return q.order_by(WorkflowStep.step_order.asc(), WorkflowStep.step_id.asc()).all()

"""
Moving a temporary upload to its request-scoped name.

Blob storage has no atomic rename, so a rename is four storage calls:
copy, verify, metadata update, delete of the source. ``BlobRename`` records
which of them completed so a failed rename can be resumed or undone with
``cleanup()``. Every step is idempotent.
"""
from __future__ import annotations
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tcrs_approval.metrics import blob_renames_total

logger = logging.getLogger(__name__)

_TEMP_PREFIX_RE = re.compile(r"^TEMP-[^_]+_")


class RenameState(str, enum.Enum):
    PENDING = "pending"
    COPIED = "copied"
    VERIFIED = "verified"
    METADATA_UPDATED = "metadata_updated"
    DONE = "done"
    FAILED = "failed"


class BlobRenameError(Exception):
    pass


@dataclass
class BlobRename:
    storage: Any
    source: str
    target: str
    metadata: Dict[str, str] = field(default_factory=dict)
    kind: str = "pdf"
    state: RenameState = RenameState.PENDING      # last completed step
    failed_step: Optional[RenameState] = None     # step that was being attempted
    error: Optional[str] = None

    @property
    def status(self) -> RenameState:
        return RenameState.FAILED if self.error else self.state

    @property
    def target_url(self) -> str:
        return self.storage.url(self.target)

    @property
    def target_ready(self) -> bool:
        """The target holds a verified copy, even if later steps failed."""
        return self.state in (RenameState.VERIFIED, RenameState.METADATA_UPDATED, RenameState.DONE)

    def _steps(self):
        return [
            (RenameState.PENDING, self._copy, RenameState.COPIED),
            (RenameState.COPIED, self._verify, RenameState.VERIFIED),
            (RenameState.VERIFIED, self._update_metadata, RenameState.METADATA_UPDATED),
            (RenameState.METADATA_UPDATED, self._delete_source, RenameState.DONE),
        ]

    def run(self) -> bool:
        """Advance from the recorded state; stop at the first failing step."""
        self.error = None
        self.failed_step = None
        for from_state, step, to_state in self._steps():
            if self.state != from_state:
                continue
            try:
                step()
            except Exception as e:
                self.failed_step = from_state
                self.error = str(e) or e.__class__.__name__
                logger.warning("%s rename %s -> %s failed after %s: %s",
                               self.kind, self.source, self.target, from_state.value, self.error)
                blob_renames_total.labels(kind=self.kind, outcome="failed").inc()
                return False
            self.state = to_state
        blob_renames_total.labels(kind=self.kind, outcome="ok").inc()
        return True

    def cleanup(self) -> bool:
        """
        Recover a failed rename.

        Once the target is verified the source is redundant, so finish the
        remaining steps. Before that, drop whatever partial target exists and
        retry from scratch.
        """
        if self.state == RenameState.DONE:
            return True
        if self.state in (RenameState.PENDING, RenameState.COPIED):
            self.storage.delete(self.target)
            self.state = RenameState.PENDING
        return self.run()

    # -- steps ---------------------------------------------------------------

    def _copy(self) -> None:
        if self.storage.exists(self.target):
            return
        if not self.storage.exists(self.source):
            raise BlobRenameError(f"source blob {self.source} not found")
        self.storage.copy(self.source, self.target)

    def _verify(self) -> None:
        target_size = self.storage.size(self.target)
        if target_size is None:
            raise BlobRenameError(f"target blob {self.target} missing after copy")
        source_size = self.storage.size(self.source)
        if source_size is not None and source_size != target_size:
            raise BlobRenameError(f"size mismatch {source_size} != {target_size}")

    def _update_metadata(self) -> None:
        if self.metadata:
            self.storage.set_metadata(self.target, self.metadata)

    def _delete_source(self) -> None:
        self.storage.delete(self.source)


def original_name(temp_blob_name: str) -> str:
    """'uploads/TEMP-abc123_invoice.pdf' -> 'invoice.pdf'"""
    base = temp_blob_name.rsplit("/", 1)[-1]
    return _TEMP_PREFIX_RE.sub("", base)


def final_blob_name(kind: str, request_id: str, temp_blob_name: str, original: Optional[str] = None) -> str:
    name = original or original_name(temp_blob_name) or f"{request_id}.{'pdf' if kind == 'pdf' else 'xlsx'}"
    return f"{kind}/{request_id}/{name}"


def rename_for_request(storage: Any, kind: str, request_id: str, temp_blob_name: str,
                       original: Optional[str] = None, uploaded_by: Optional[str] = None) -> BlobRename:
    op = BlobRename(
        storage=storage,
        source=temp_blob_name,
        target=final_blob_name(kind, request_id, temp_blob_name, original),
        metadata={k: v for k, v in {"request_id": request_id, "uploaded_by": uploaded_by or ""}.items() if v},
        kind=kind,
    )
    op.run()
    return op


def describe(ops: List[BlobRename]) -> List[Dict[str, Any]]:
    return [
        {"kind": o.kind, "source": o.source, "target": o.target, "status": o.status.value,
         "failed_step": o.failed_step.value if o.failed_step else None, "error": o.error}
        for o in ops
    ]

from __future__ import annotations
import os, json, logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

# Default: ./var/audit (override with env AUDIT_DIR)
_DEFAULT_DIR = Path.cwd() / "var" / "audit"
AUDIT_DIR = Path(os.getenv("AUDIT_DIR", str(_DEFAULT_DIR)))

def _ensure_dir(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)

def write_event(event: Dict[str, Any], directory: Path | None = None) -> bool:
    """
    Append a single workflow-history event to a day-partitioned .jsonl file.
    Each line is a JSON object. Returns False instead of raising on I/O errors.
    """
    target = directory or AUDIT_DIR
    try:
        _ensure_dir(target)
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        fp = target / f"{day}.jsonl"
        with fp.open("a", encoding="utf-8") as fh:
            json.dump(event, fh, ensure_ascii=False, default=str)
            fh.write("\n")
        return True
    except OSError as e:
        logger.warning("audit mirror write failed: %s", e)
        return False

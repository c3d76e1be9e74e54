import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from turnstream.config import get_config

logger = logging.getLogger(__name__)

# Maintain per-session filename base so all writes go to the same timestamped file
_SESSION_FILE_BASE: Dict[str, str] = {}


def _file_base_for(session_id: str) -> str:
    """Return a stable '<timestamp>_<session_id>' base for this process."""
    if session_id in _SESSION_FILE_BASE:
        return _SESSION_FILE_BASE[session_id]
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    base = f"{ts}_{session_id}"
    _SESSION_FILE_BASE[session_id] = base
    return base


def audit_write(session_id: str, record: Dict[str, Any], base_dir: Optional[str] = None) -> None:
    """Append a structured JSON line to the per-session audit log.

    Disabled unless an audit directory is configured (TURNSTREAM_AUDIT_DIR).
    Best-effort: I/O errors are logged, never raised.
    """
    base_dir = base_dir or get_config().audit_dir
    if not base_dir:
        return
    record = dict(record)
    record.setdefault("ts", datetime.now(timezone.utc).isoformat())
    record.setdefault("session_id", session_id)
    try:
        os.makedirs(base_dir, exist_ok=True)
        log_path = os.path.join(base_dir, f"{_file_base_for(session_id)}.log")
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning("audit write failed for %s: %s", session_id, e)


def audit_close(session_id: str) -> None:
    """Forget the file base of a torn-down session."""
    _SESSION_FILE_BASE.pop(session_id, None)

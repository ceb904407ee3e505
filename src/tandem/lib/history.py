"""Conversation history storage and retrieval.

Snapshots of an agent's message log are stored as JSON under
``<base_dir>/<session_id>/<timestamp>.json``. The newest file of a
session is what ``--resume`` loads.

Examples:
    Save a log and load it back::

        >>> path = save_session(log.snapshot(), session_id="s1", base_dir=Path("sessions"))
        >>> load_latest_session("s1", base_dir=Path("sessions")).messages == list(log)
        True
"""

import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from tandem.lib.messages import LogSnapshot

logger = logging.getLogger(__name__)


def save_session(snapshot: LogSnapshot, *, session_id: str, base_dir: Path) -> Path:
    """Write a snapshot for ``session_id`` and return the file path."""
    session_dir = base_dir / session_id
    session_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filepath = session_dir / f"{timestamp}.json"
    filepath.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Saved session %s to %s", session_id, filepath)
    return filepath


def load_latest_session(session_id: str, *, base_dir: Path) -> LogSnapshot | None:
    """Load the newest readable snapshot of a session, or None if there is none."""
    session_dir = base_dir / session_id
    if not session_dir.is_dir():
        return None
    for filepath in sorted(session_dir.glob("*.json"), reverse=True):
        try:
            return LogSnapshot.model_validate_json(filepath.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.warning("Skipping unreadable snapshot %s: %s", filepath, e)
    return None


def list_sessions(base_dir: Path) -> list[str]:
    """Session ids with at least one snapshot, sorted by name."""
    if not base_dir.is_dir():
        return []
    return sorted(
        d.name for d in base_dir.iterdir() if d.is_dir() and any(d.glob("*.json"))
    )

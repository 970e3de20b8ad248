"""Persistence for the change-feed cursor"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class CursorStore:
    """
    Keeps the highest processed sequence number in a small JSON file so a
    restarted watcher resumes instead of replaying history.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[int]:
        """Persisted cursor, or None if there is no usable file."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            value = int(data["last_seq"])
            return value if value >= 0 else None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cursor file {self.path}: {e}")
            return None

    def save(self, seq: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps({"last_seq": seq}), encoding="utf-8")
        os.replace(tmp, self.path)

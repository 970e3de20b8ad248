"""Pinned-conversation order from the Messages pinning preferences file."""
import logging
import plistlib
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from config.settings import settings
from utils.identifiers import canonical_identifier

logger = logging.getLogger(__name__)

_ERROR_LOG_INTERVAL_S = 30


def extract_pinned_identifiers(payload: Any) -> List[str]:
    """Flatten the ``pD.pP`` pin list (or a bare list) into identifier strings, in order."""
    out: List[str] = []

    def add(entry: Any) -> None:
        if isinstance(entry, str):
            value = entry.strip()
            if value:
                out.append(value)
        elif isinstance(entry, (list, tuple)):
            for item in entry:
                add(item)
        elif isinstance(entry, dict):
            for value in entry.values():
                add(value)

    if isinstance(payload, list):
        add(payload)
        return out
    if not isinstance(payload, dict):
        return out

    container = payload.get("pD") if isinstance(payload.get("pD"), dict) else payload
    pinned = container.get("pP")
    if isinstance(pinned, list):
        add(pinned)
    return out


class PinningReader:
    """Maps canonical identifiers to pin rank; re-reads the file only when its mtime changes."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.PINNING_PLIST_PATH)
        self._mtime: Optional[float] = None
        self._ranks: Dict[str, int] = {}
        self._last_error_at = 0.0

    def _load(self) -> Dict[str, int]:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            self._mtime, self._ranks = None, {}
            return self._ranks

        if self._mtime == mtime:
            return self._ranks

        try:
            with self.path.open("rb") as f:
                payload = plistlib.load(f)
        except (OSError, plistlib.InvalidFileException, ValueError) as e:
            now = time.monotonic()
            if now - self._last_error_at > _ERROR_LOG_INTERVAL_S:
                logger.warning(f"Failed to read pinned chats from {self.path}: {e}")
                self._last_error_at = now
            return self._ranks

        ranks: Dict[str, int] = {}
        for index, identifier in enumerate(extract_pinned_identifiers(payload)):
            key = canonical_identifier(identifier)
            if key and key not in ranks:
                ranks[key] = index

        self._mtime, self._ranks = mtime, ranks
        logger.debug(f"Loaded {len(ranks)} pinned identifiers")
        return ranks

    def rank_for(self, candidates: Iterable[str]) -> Optional[int]:
        """Lowest pin rank among the candidate identifiers, None if none is pinned."""
        ranks = self._load()
        best: Optional[int] = None
        for candidate in candidates:
            rank = ranks.get(canonical_identifier(candidate))
            if rank is not None and (best is None or rank < best):
                best = rank
        return best

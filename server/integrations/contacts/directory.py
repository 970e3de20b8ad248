"""Contact-name lookup used to label senders and to merge conversations."""
from typing import Dict, List, Optional

from utils.identifiers import canonical_identifier


class ContactDirectory:
    """
    Identity directory: every identifier is its own contact and has no name.

    A real address-book integration subclasses this and overrides both methods.
    """

    def display_name(self, identifier: Optional[str]) -> Optional[str]:
        return None

    def related_identifiers(self, identifier: str) -> List[str]:
        """All identifiers known to belong to the same contact, including the input."""
        return [identifier]


class StaticContactDirectory(ContactDirectory):
    """Directory backed by an in-memory ``{identifier: name}`` mapping."""

    def __init__(self, names: Dict[str, str]):
        self._names: Dict[str, str] = {}
        self._by_name: Dict[str, List[str]] = {}
        for identifier, name in names.items():
            key = canonical_identifier(identifier)
            if not key or not name:
                continue
            self._names[key] = name
            self._by_name.setdefault(name, []).append(key)

    def display_name(self, identifier: Optional[str]) -> Optional[str]:
        if not identifier:
            return None
        return self._names.get(canonical_identifier(identifier))

    def related_identifiers(self, identifier: str) -> List[str]:
        name = self.display_name(identifier)
        if name is None:
            return [identifier]
        related = [identifier]
        for key in self._by_name[name]:
            if key != canonical_identifier(identifier):
                related.append(key)
        return related

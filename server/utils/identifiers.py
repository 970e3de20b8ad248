"""Participant identifier utilities (phone numbers and email handles)."""
import re

_PHONE_RE = re.compile(r"^\+?\d[\d\s()\-]{6,}$")
_NON_DIGIT_RE = re.compile(r"\D")


def digits_only(phone: str) -> str:
    """Strip all non-digit characters from a phone number."""
    return _NON_DIGIT_RE.sub("", phone)


def is_phone_number(identifier: str) -> bool:
    """Check if a string looks like a phone number."""
    return bool(_PHONE_RE.match(identifier.strip()))


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number for comparison.

    Strips a leading "1" country code from 11-digit numbers and otherwise
    keeps the last ten digits, so "+1 (555) 123-4567", "15551234567" and
    "5551234567" all collapse to "5551234567".
    """
    digits = digits_only(phone)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    if len(digits) >= 10:
        return digits[-10:]
    return digits


def canonical_identifier(identifier: str) -> str:
    """Canonical form used to decide that two raw identifiers name the same contact."""
    trimmed = (identifier or "").strip()
    if not trimmed:
        return ""
    if is_phone_number(trimmed):
        return normalize_phone(trimmed).lower()
    return trimmed.lower()


def same_identifier(a: str, b: str) -> bool:
    left = canonical_identifier(a)
    return bool(left) and left == canonical_identifier(b)


def looks_unresolved(name: str) -> bool:
    """True if a display name is just a raw phone number or email, not a contact name."""
    if re.match(r"^[+\d][\d\s()\-+.]+$", name):
        return True
    return "@" in name and "." in name

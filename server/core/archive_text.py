"""
Plain-text recovery from legacy keyed-archive ("typedstream") message bodies.

When the store leaves a message's ``text`` column empty, the visible text only
lives inside the binary ``attributedBody`` blob. Instead of deserializing the
object graph, the blob is scanned for every ``NSString`` marker, a UTF-8 run is
decoded after each one, and the longest candidate that does not look like
archive metadata wins. Two progressively blunter fallbacks follow.
"""
from typing import Optional
import logging

logger = logging.getLogger(__name__)

STRING_MARKER = b"NSString"
_STRING_MARKER_TEXT = "NSString"
_DICTIONARY_MARKER_TEXT = "NSDictionary"

MAX_TEXT_LENGTH = 3000

_METADATA_SUBSTRINGS = ("streamtyped", "nsattributedstring", "nsdictionary", "nsobject")
_TAIL_MARKER = "iI"
_REPLACEMENT_CHARS = ("\ufffd", "\ufffc")
_OBJECT_REPLACEMENT = "\ufffc"


def _is_likely_text_byte(b: int) -> bool:
    """Printable ASCII or a UTF-8 lead byte."""
    return 0x20 <= b <= 0x7E or 0xC2 <= b <= 0xF4


def _is_terminator(b: int) -> bool:
    return 0x84 <= b <= 0x91


def _utf8_width(lead: int) -> int:
    """Encoded length implied by a lead byte, 0 if it cannot start a character."""
    if lead < 0x80:
        return 1
    if 0xC2 <= lead <= 0xDF:
        return 2
    if 0xE0 <= lead <= 0xEF:
        return 3
    if 0xF0 <= lead <= 0xF4:
        return 4
    return 0


def looks_like_metadata(text: str) -> bool:
    """True if the text is archive class names rather than message content."""
    lowered = text.lower().strip()
    if not lowered:
        return False
    return any(marker in lowered for marker in _METADATA_SUBSTRINGS)


def _is_tail_suffix(text: str) -> bool:
    if not text:
        return True
    if len(text) > 5:
        return False
    for ch in text:
        if ch.isdigit() and ch.isascii():
            continue
        if ch == "*" or ch in _REPLACEMENT_CHARS:
            continue
        if ord(ch) < 0x20:
            continue
        return False
    return True


def _strip_tail_markers(text: str) -> str:
    s = text.strip()
    while True:
        if s.endswith(_TAIL_MARKER):
            s = s[:-2].strip()
            continue
        idx = s.rfind(_TAIL_MARKER)
        if idx >= 0 and idx >= len(s) - 8 and _is_tail_suffix(s[idx + 2:]):
            s = s[:idx].strip()
            continue
        return s


def sanitize_text(raw: str) -> str:
    """Drop replacement/control characters, collapse whitespace, cap the length."""
    out: list[str] = []
    last_space = False

    for ch in raw:
        if ch in _REPLACEMENT_CHARS:
            continue

        if ch == "\n":
            # consecutive newlines (or a newline after a space) collapse
            if out and not last_space:
                out.append("\n")
            last_space = True
            continue

        code = ord(ch)
        if (code < 0x20 and ch != "\t") or code == 0x7F:
            continue

        if ch.isspace():
            if out and not last_space:
                out.append(" ")
                last_space = True
            continue

        out.append(ch)
        last_space = False

    return "".join(out).strip()[:MAX_TEXT_LENGTH]


def cleanup_text(raw: str, from_archive: bool = True) -> str:
    """Strip archive artifacts (slot prefixes, tail markers) from an extracted string."""
    s = sanitize_text(raw)
    if not s:
        return ""

    s = s.lstrip(_OBJECT_REPLACEMENT).strip()
    if not s:
        return ""

    has_artifacts = (
        from_archive
        or _TAIL_MARKER in raw
        or _TAIL_MARKER in s
        or "\ufffd" in raw
    )

    if has_artifacts:
        # A few garbage characters may precede the "+" sentinel
        plus_idx = s.find("+")
        if 0 <= plus_idx <= 4:
            s = s[plus_idx:]

        if s.startswith("+"):
            s = s[1:]
            digits = 0
            while digits < len(s) and "0" <= s[digits] <= "9":
                digits += 1
            # "+5Emphasized ..." carries a numeric slot index before the text
            if 0 < digits < len(s) and s[digits].isalpha():
                s = s[digits:]

    s = _strip_tail_markers(s)
    return s.lstrip(_OBJECT_REPLACEMENT).strip()


def _decode_segment(segment: bytes) -> str:
    """Decode the UTF-8 run that follows one string marker."""
    start = next((i for i, b in enumerate(segment) if _is_likely_text_byte(b)), None)
    if start is None:
        return ""

    chars: list[str] = []
    i = start
    end = len(segment)

    while i < end:
        b = segment[i]

        # Leading noise is tolerated; a terminator after real text ends the run
        if chars and _is_terminator(b):
            break

        width = _utf8_width(b)
        ch = None
        if width and i + width <= end:
            try:
                ch = segment[i:i + width].decode("utf-8")
            except UnicodeDecodeError:
                ch = None

        if ch is None:
            if chars:
                break
            i += 1
            continue

        if ord(ch) < 0x20 and ch not in ("\n", "\t"):
            if chars:
                break
            i += width
            continue

        chars.append(ch)
        i += width

    return "".join(chars).strip()


def _best_marker_candidate(blob: bytes) -> str:
    best = ""
    pos = blob.find(STRING_MARKER)
    while pos >= 0:
        after = pos + len(STRING_MARKER)
        candidate = cleanup_text(_decode_segment(blob[after:]), True)
        if candidate and not looks_like_metadata(candidate) and len(candidate) > len(best):
            best = candidate
        pos = blob.find(STRING_MARKER, after)
    return best


def extract(blob: Optional[bytes]) -> Optional[str]:
    """Recover the visible text of an archived body, or None if nothing usable is found."""
    if not blob:
        return None

    candidate = _best_marker_candidate(bytes(blob))
    if candidate:
        return candidate

    decoded = bytes(blob).decode("utf-8", errors="replace").replace("\x00", "")

    marker_idx = decoded.find(_STRING_MARKER_TEXT)
    if marker_idx >= 0:
        fallback = decoded[marker_idx + len(_STRING_MARKER_TEXT):]
        dict_idx = fallback.find(_DICTIONARY_MARKER_TEXT)
        if dict_idx > 0:
            fallback = fallback[:dict_idx]
        cleaned = cleanup_text(fallback, True)
        if cleaned and not looks_like_metadata(cleaned):
            return cleaned

    cleaned = cleanup_text(decoded, True)
    if cleaned and not looks_like_metadata(cleaned):
        return cleaned

    logger.debug(f"No text recovered from {len(blob)}-byte archived body")
    return None


def get_body_text(raw_text: Optional[str], blob: Optional[bytes]) -> str:
    """Message text with fallback chain: text column -> archived body -> empty string."""
    if raw_text:
        return raw_text
    return extract(blob) or ""

import re

# Copying a handle from the Bluesky web app tends to bring bidi marks along
_BIDI_CONTROLS = re.compile("[\u202a\u202c\u200e\u200f\u2066-\u2069]")


def normalize_handle(handle: str) -> str:
    """Strip bidi control characters, whitespace and a leading '@' from a handle."""
    cleaned = _BIDI_CONTROLS.sub("", handle).strip()
    return cleaned.lstrip("@").strip()


def same_endpoint(a: str, b: str) -> bool:
    """Compare two service URLs ignoring case and a trailing slash."""
    return a.rstrip("/").lower() == b.rstrip("/").lower()

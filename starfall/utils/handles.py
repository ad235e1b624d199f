import re
from typing import Optional

# Telegram username (letters, digits, underscore) or numeric user id
_RECIPIENT_RE = re.compile(r"^@?([A-Za-z0-9_]{1,32})$")


def normalize_recipient(text: Optional[str]) -> Optional[str]:
    """Canonical gift recipient: "@username" or a numeric id; None if not a valid handle."""
    match = _RECIPIENT_RE.match(str(text or "").strip())
    if not match:
        return None
    name = match.group(1)
    return name if name.isdigit() else "@" + name


def bare_handle(text: Optional[str]) -> str:
    """Handle without surrounding whitespace or the leading "@"."""
    return str(text or "").strip().lstrip("@").strip()

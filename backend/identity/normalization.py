"""
Identity normalization helpers.

Boundary functions that turn free-text module input into the canonical
values stored on contacts. Nothing raw is ever used as a join key.
"""

import re
import uuid
import unicodedata
from typing import Optional, Union

UNKNOWN_FIRST_NAME = "UNKNOWN"
ZIP_WIDTH = 5

_EXTENSION_RE = re.compile(r"(?<=\d)[^\w#]*(?:ext\.?|x|#)", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")
_NON_LETTER_RE = re.compile(r"[^A-Z]")
_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Canonicalize a free-text phone number to 10 digits.

    Anything after an extension marker is ignored and a leading US country
    code is dropped. A marker only counts once digits have been seen, so a
    label such as "Text:" or "Fax-" in front of the number is harmless.
    Returns None when no 10-digit form exists.

    >>> normalize_phone("(404) 555-1234 ext. 9")
    '4045551234'
    >>> normalize_phone("+1 404.555.1234")
    '4045551234'
    """
    if raw is None:
        return None

    text = _EXTENSION_RE.split(str(raw), maxsplit=1)[0]
    digits = _NON_DIGIT_RE.sub("", text)

    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]

    if len(digits) != 10:
        return None
    return digits


def normalize_email(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    email = raw.strip().lower()
    return email or None


def normalize_name_component(value: Optional[str]) -> str:
    """
    Fold to ASCII, uppercase, keep only A-Z.

    "O'Brien" -> "OBRIEN", "Smith-Jones" -> "SMITHJONES", "José" -> "JOSE"
    """
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _NON_LETTER_RE.sub("", folded.upper())


def normalize_zip(value: Optional[str]) -> str:
    if not value:
        return "0" * ZIP_WIDTH
    cleaned = _NON_ALNUM_RE.sub("", str(value).upper())[:ZIP_WIDTH]
    if not cleaned:
        return "0" * ZIP_WIDTH
    if cleaned.isdigit():
        return cleaned.zfill(ZIP_WIDTH)
    return cleaned.ljust(ZIP_WIDTH, "0")


def generate_household_key(
    first_name: Optional[str],
    last_name: Optional[str],
    zip_code: Optional[str] = None
) -> str:
    """
    Build the LAST_FIRST_ZIP fallback match key.

    Raises:
        ValueError: If the last name has no letters
    """
    last = normalize_name_component(last_name)
    if not last:
        raise ValueError("last_name is required to build a household key")

    first = normalize_name_component(first_name) or UNKNOWN_FIRST_NAME
    return f"{last}_{first}_{normalize_zip(zip_code)}"


def coerce_uuid(value: Union[uuid.UUID, str, None], field_name: str) -> uuid.UUID:
    """
    Accept a UUID or its string form.

    Raises:
        ValueError: If the value is missing or malformed
    """
    if value is None or value == "":
        raise ValueError(f"{field_name} is required")
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValueError(f"{field_name} must be a valid UUID")


def clean_text(value: Optional[str]) -> Optional[str]:
    """Strip surrounding whitespace; blank becomes None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None

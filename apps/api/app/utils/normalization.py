"""Contact and property normalization used for queueing and sibling matching."""

import re
import unicodedata
from typing import Optional


# =============================================================================
# States
# =============================================================================

STATE_CODES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY",
    "district of columbia": "DC", "washington dc": "DC", "puerto rico": "PR",
}

VALID_STATE_CODES = frozenset(STATE_CODES.values())


def normalize_state(state: Optional[str]) -> Optional[str]:
    """
    Two-letter state code from a code or full state name.

    Raises ValueError for anything that is not a US state.
    """
    if not state:
        return None

    key = " ".join(state.replace(".", "").split()).lower()
    if key in STATE_CODES:
        return STATE_CODES[key]
    if key.upper() in VALID_STATE_CODES:
        return key.upper()

    raise ValueError(f"Invalid state '{state}'")


# =============================================================================
# Phone and email
# =============================================================================

def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    US phone number in E.164 (+15551234567).

    Accepts 10 digits, 11 digits with a leading 1, or an E.164 value; any
    punctuation is ignored. Raises ValueError otherwise.
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    raise ValueError(f"Invalid phone number '{phone}'")


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Collapse whitespace in a display name."""
    if not name:
        return None
    return " ".join(name.split()) or None


# =============================================================================
# Sibling matching keys
# =============================================================================

STREET_SUFFIXES = {
    "street": "st",
    "avenue": "ave",
    "road": "rd",
    "drive": "dr",
    "lane": "ln",
    "court": "ct",
    "boulevard": "blvd",
    "place": "pl",
    "terrace": "ter",
    "circle": "cir",
    "parkway": "pkwy",
    "highway": "hwy",
}


def _match_words(value: Optional[str]) -> list[str]:
    """Lowercased, accent-free words with punctuation removed."""
    if not value:
        return []
    text = "".join(
        ch for ch in unicodedata.normalize("NFKD", value) if not unicodedata.combining(ch)
    )
    return re.sub(r"[^\w\s]", " ", text.lower()).split()


def normalize_address(address: Optional[str]) -> Optional[str]:
    """
    Normalize a street address for equality matching.

    Lowercases, drops punctuation and abbreviates common street suffixes,
    so "123 Main Street," and "123 main st" compare equal.
    """
    words = _match_words(address)
    return " ".join(STREET_SUFFIXES.get(word, word) for word in words) or None


def name_prefix(name: Optional[str], length: int = 2) -> Optional[str]:
    """
    First `length` words of a normalized contact name.

    Sibling contacts are often named "Jane Doe", "Jane Doe (2)", "Jane Doe - Alt";
    the prefix groups them.
    """
    words = [w for w in _match_words(name) if not w.isdigit()]
    if not words:
        return None
    return " ".join(words[:length])

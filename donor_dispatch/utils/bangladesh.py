"""
Bangladesh districts used for donor matching
"""
import re

# Districts offered by the mobile app, in the spelling stored on donor records
DISTRICTS = [
    "Dhaka", "Chittagong", "Sylhet", "Rajshahi", "Khulna",
    "Barisal", "Rangpur", "Mymensingh", "Comilla", "Noakhali",
    "Narayanganj", "Gazipur", "Bogra", "Jessore", "Cox's Bazar",
]

# Alternate and official spellings -> stored spelling
DISTRICT_ALIASES = {
    "chattogram": "Chittagong",
    "ctg": "Chittagong",
    "barishal": "Barisal",
    "cumilla": "Comilla",
    "bogura": "Bogra",
    "jashore": "Jessore",
    "coxs bazar": "Cox's Bazar",
    "dacca": "Dhaka",
}

_CANONICAL = {d.lower(): d for d in DISTRICTS}
_DISTRICT_PATTERN = re.compile(r"[A-Za-z][A-Za-z .'\-]*")


def normalize_district(value: str) -> str:
    """
    Normalize a district name to the spelling stored on donor records.

    Known districts and their aliases are matched case-insensitively; other
    well-formed names are returned trimmed. Raises ValueError for empty or
    malformed input.
    """
    if not isinstance(value, str):
        raise ValueError("District must be a string")
    cleaned = " ".join(value.split())
    if not cleaned or not _DISTRICT_PATTERN.fullmatch(cleaned):
        raise ValueError(f"Invalid district: {value!r}")

    key = cleaned.lower()
    if key in _CANONICAL:
        return _CANONICAL[key]
    if key in DISTRICT_ALIASES:
        return DISTRICT_ALIASES[key]
    return cleaned

"""
Dutch province table used for region targeting.
"""

from __future__ import annotations

import re
import unicodedata

REGIONS: dict[str, str] = {
    "LB": "Limburg",
    "NB": "Noord-Brabant",
    "GE": "Gelderland",
    "ZH": "Zuid-Holland",
    "NH": "Noord-Holland",
    "UT": "Utrecht",
    "OV": "Overijssel",
    "DR": "Drenthe",
    "GR": "Groningen",
    "FR": "Friesland",
    "FL": "Flevoland",
    "ZE": "Zeeland",
}

REGION_CODES = tuple(REGIONS)

# Stripped once from the start of a normalized name
NAME_PREFIXES = ("gemeente ", "provincie ", "regio ", "stad ", "'s-")

_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str | None) -> str:
    """Fold diacritics, lowercase, trim, collapse whitespace and strip a prefix."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    name = _WHITESPACE.sub(" ", folded.lower()).strip()
    for prefix in NAME_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):].strip()
            break
    return name


_BY_NAME = {normalize_name(label): code for code, label in REGIONS.items()}


def resolve_region(value: str | None) -> str | None:
    """Province code for a code or label ("zh", "Zuid-Holland"), else None."""
    if not value:
        return None
    code = value.strip().upper()
    if code in REGIONS:
        return code
    return _BY_NAME.get(normalize_name(value))


def region_label(code: str) -> str:
    return REGIONS.get(code.upper(), code)

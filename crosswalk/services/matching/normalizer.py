"""String canonicalization shared by every matching stage."""
import re
from typing import Optional

_SEPARATORS = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

# Canonical equipment types keyed by their normalized spellings
PRODUCT_TYPE_ALIASES = {
    "AC": "AC",
    "AIR CONDITIONER": "AC",
    "AIR CONDITIONING": "AC",
    "CONDENSER": "AC",
    "CONDENSING UNIT": "AC",
    "HEAT PUMP": "HEAT PUMP",
    "HEATPUMP": "HEAT PUMP",
    "HP": "HEAT PUMP",
    "FURNACE": "FURNACE",
    "GAS FURNACE": "FURNACE",
    "AIR HANDLER": "AIR HANDLER",
    "AIR HANDLING UNIT": "AIR HANDLER",
    "AH": "AIR HANDLER",
    "AHU": "AIR HANDLER",
    "PACKAGE UNIT": "PACKAGE UNIT",
    "PACKAGED UNIT": "PACKAGE UNIT",
    "RTU": "PACKAGE UNIT",
    "COIL": "COIL",
    "EVAPORATOR COIL": "COIL",
}


def normalize(text: Optional[str]) -> str:
    """Canonicalize a SKU, model or brand string.

    Uppercases, strips punctuation separators (dashes, slashes, dots,
    underscores, ...) and collapses whitespace runs to a single space.
    Total: None or empty input yields an empty string.

    Examples:
        >>> normalize("len-ac-3t-16s")
        'LENAC3T16S'
        >>> normalize("  Air   Handler ")
        'AIR HANDLER'
    """
    if not text:
        return ""
    stripped = _SEPARATORS.sub("", str(text).upper())
    return _WHITESPACE.sub(" ", stripped).strip()


def normalize_product_type(value: Optional[str]) -> str:
    """Map a free-form equipment type onto its canonical name."""
    key = normalize(value)
    return PRODUCT_TYPE_ALIASES.get(key, key)

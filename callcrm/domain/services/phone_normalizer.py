"""
Caller Identifier Normalizer
Maps raw provider caller ids to the canonical "+<digits>" form used as contact key
"""
import re
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize(raw: Optional[str]) -> str:
    """
    Normalize a raw caller identifier.

    Every character except ASCII digits is stripped, and the result always
    starts with a single "+". Total and deterministic: garbage or empty input
    yields "+".

    Examples:
        "306912345678"      -> "+306912345678"
        "+30 691 234 5678"  -> "+306912345678"
        "(555) 000-0001"    -> "+5550000001"
        ""                  -> "+"
    """
    if raw is None:
        return "+"
    digits = _NON_DIGITS.sub("", str(raw))
    return f"+{digits}"


def is_degenerate(normalized: str) -> bool:
    """True when normalization produced no digits at all."""
    return normalized == "+"

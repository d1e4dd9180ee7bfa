"""
Person identifier (RUT) validation.

An identifier is a numeric body followed by a check character computed with
the modulo-11 algorithm. Dots and dashes are ignored, and the check character
'K' is accepted in either case.
"""

from typing import Optional


def normalize_identifier(identifier: str) -> str:
    """Strip separators and upper-case the check character."""
    return identifier.replace(".", "").replace("-", "").strip().upper()


def compute_check_character(body: str) -> str:
    """Compute the modulo-11 check character for a numeric body."""
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1

    value = 11 - (total % 11)
    if value == 11:
        return "0"
    if value == 10:
        return "K"
    return str(value)


def is_valid_identifier(identifier: Optional[str]) -> bool:
    """Return True iff the identifier is well formed and its check character matches."""
    if not identifier or not isinstance(identifier, str):
        return False

    cleaned = normalize_identifier(identifier)
    if len(cleaned) < 2:
        return False

    body, check = cleaned[:-1], cleaned[-1]
    if not (check.isdigit() or check == "K"):
        return False
    if not body.isdigit() or not body.isascii():
        return False

    return compute_check_character(body) == check

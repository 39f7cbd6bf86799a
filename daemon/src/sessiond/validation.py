"""Input validation for pairing requests."""

import re
from typing import Any

from sessiond.errors import ValidationError

# E.164 numbers carry at most 15 digits
MAX_SUBJECT_DIGITS = 15
DEFAULT_MIN_SUBJECT_DIGITS = 7

_NON_DIGITS = re.compile(r"\D")


def normalize_subject_id(
    raw: Any, min_digits: int = DEFAULT_MIN_SUBJECT_DIGITS
) -> str:
    """Normalize a caller-supplied phone number to a digits-only identifier.

    Formatting characters (spaces, dashes, a leading "+", parentheses)
    are stripped.

    Args:
        raw: Value supplied by the caller.
        min_digits: Minimum digit count accepted.

    Returns:
        Digits-only subject identifier.

    Raises:
        ValidationError: If the value is not a string or has too few or
            too many digits.
    """
    if not isinstance(raw, str):
        raise ValidationError("Number must be a string")

    digits = _NON_DIGITS.sub("", raw)

    if not digits:
        raise ValidationError("Number is required")
    if len(digits) < min_digits:
        raise ValidationError(f"Number must have at least {min_digits} digits")
    if len(digits) > MAX_SUBJECT_DIGITS:
        raise ValidationError(
            f"Number must have at most {MAX_SUBJECT_DIGITS} digits"
        )

    return digits

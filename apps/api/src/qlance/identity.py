"""Identity formats used by the ledger.

A public identity is 60 uppercase alphanumeric characters. A seed is the
55 or 56 lowercase letter secret that derives it; seeds are never logged or
echoed back in error messages.
"""

from __future__ import annotations

import re

from qlance.errors import ValidationError

PUBLIC_ID_PATTERN = re.compile(r"[A-Z0-9]{60}")
SEED_PATTERN = re.compile(r"[a-z]{55,56}")


def is_valid_public_id(value: object) -> bool:
    return isinstance(value, str) and PUBLIC_ID_PATTERN.fullmatch(value) is not None


def is_valid_seed(value: object) -> bool:
    return isinstance(value, str) and SEED_PATTERN.fullmatch(value) is not None


def require_public_id(value: str | None, *, field: str = "address") -> str:
    if value is None or not is_valid_public_id(value):
        raise ValidationError(f"Invalid Qubic address format for {field}")
    return value


def require_seed(value: str | None) -> str:
    if value is None or not is_valid_seed(value):
        raise ValidationError("Invalid seed format. Must be 55-56 lowercase characters.")
    return value

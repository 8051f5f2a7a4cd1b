"""Verification codes exchanged between driver and passenger at pickup."""

import re
import secrets
import string
from typing import Callable

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 6
MAX_ATTEMPTS = 10

_CODE_RE = re.compile(r"^[A-Z0-9]{%d,%d}$" % (MIN_CODE_LENGTH, MAX_CODE_LENGTH))


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def is_valid_code(code) -> bool:
    """True for 4-6 alphanumeric characters (case-insensitive)."""
    return bool(_CODE_RE.match(normalize_code(code)))


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_unique_code(is_taken: Callable[[str], bool], length: int = CODE_LENGTH) -> str:
    """
    Draw codes until one is not held by a currently open booking.

    Args:
        is_taken: predicate answering whether a code is already in use
        length: code length

    Raises:
        RuntimeError: if no free code was found within MAX_ATTEMPTS draws
    """
    for _ in range(MAX_ATTEMPTS):
        code = generate_code(length)
        if not is_taken(code):
            return code
    raise RuntimeError("Could not generate a unique verification code")

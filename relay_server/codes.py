"""Pairing code generation."""

import secrets
import string
from typing import Callable


class CodeExhaustedError(RuntimeError):
    """No free pairing code was found within the allowed number of attempts."""


def generate_code(length: int) -> str:
    """Generate a random decimal code of ``length`` digits.

    Each digit is drawn independently, so leading zeros are allowed and
    "0000" is as likely as any other code. Uniqueness is the caller's job.
    """
    if length <= 0:
        raise ValueError(f"code length must be greater than 0, got {length}")
    return "".join(secrets.choice(string.digits) for _ in range(length))


def issue_code(is_taken: Callable[[str], bool], length: int = 4, attempts: int = 2048) -> str:
    """Return a fresh code for which ``is_taken(code)`` is False.

    A new candidate is drawn on every attempt. Raises CodeExhaustedError once
    ``attempts`` candidates have all collided.
    """
    for _ in range(attempts):
        code = generate_code(length)
        if not is_taken(code):
            return code
    raise CodeExhaustedError(f"no free {length}-digit code after {attempts} attempts")


def is_valid_code(value, length: int = 4) -> bool:
    """Check that ``value`` is a string of exactly ``length`` ASCII digits."""
    return (
        isinstance(value, str)
        and len(value) == length
        and all(c in string.digits for c in value)
    )

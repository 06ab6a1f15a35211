"""
Organization invite codes.

Codes look like ``ABC-1234``: three uppercase letters, a dash, four digits.
Characters are drawn with ``secrets.choice`` so every letter and digit is
equally likely.
"""
import re
import secrets
import string
import time
from typing import Awaitable, Callable

from flowbit.utils import get_logger


log = get_logger(__name__)

INVITE_CODE_RE = re.compile(r"^[A-Z]{3}-[0-9]{4}$")
MAX_ATTEMPTS = 10


def _letters(count: int) -> str:
    return "".join(secrets.choice(string.ascii_uppercase) for _ in range(count))


def _digits(count: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(count))


def generate_invite_code() -> str:
    return f"{_letters(3)}-{_digits(4)}"


def is_valid_invite_code_format(code: str) -> bool:
    return bool(INVITE_CODE_RE.match(code))


def format_invite_code(code: str) -> str:
    """Remove whitespace and uppercase, e.g. ``' abc - 1234'`` -> ``'ABC-1234'``."""
    return re.sub(r"\s+", "", code).upper()


def fallback_invite_code(now_ms: int | None = None) -> str:
    """Two random letters, ``T``, then the last four digits of a millisecond timestamp."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{_letters(2)}T-{now_ms % 10_000:04d}"


async def generate_unique_invite_code(exists: Callable[[str], Awaitable[bool]]) -> str:
    """
    Generate a code for which ``exists`` returns False.

    Tries MAX_ATTEMPTS random codes, then returns a timestamp-derived code
    without checking it again. The unique constraint on
    ``organizations.invite_code`` is what finally guarantees uniqueness.
    """
    for _ in range(MAX_ATTEMPTS):
        code = generate_invite_code()
        if not await exists(code):
            return code

    code = fallback_invite_code()
    log.warning("No free invite code after %d attempts, falling back to %s", MAX_ATTEMPTS, code)
    return code

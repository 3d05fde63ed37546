"""Human-typeable redemption code generation."""

from __future__ import annotations

import re
import secrets
from typing import Awaitable, Callable, Iterator

from loguru import logger

from riselocal_api.core.settings import settings


# No 0/O, 1/I/L: codes are read aloud and typed at the counter.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
LENGTH_STEP = 2
MAX_CODE_LENGTH = 32

_SEPARATORS = re.compile(r"[\s\-_]+")


class CodeGenerationExhausted(RuntimeError):
    """Raised when every attempt across every code length collided."""

    def __init__(self, attempts: int, max_length: int) -> None:
        super().__init__(f"Unable to generate a unique code after {attempts} attempts (up to {max_length} chars)")
        self.attempts = attempts
        self.max_length = max_length


def generate_code(length: int, *, alphabet: str = CODE_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_code(raw: str | None) -> str:
    """Canonical form used for storage and lookup."""

    if not raw:
        return ""
    return _SEPARATORS.sub("", raw).upper()


def candidate_lengths(
    base_length: int | None = None,
    widen_steps: int | None = None,
) -> Iterator[int]:
    """Yield the base length, then progressively longer ones."""

    length = base_length or settings.redemption_code_length
    steps = settings.redemption_code_widen_steps if widen_steps is None else widen_steps
    for step in range(steps + 1):
        yield min(length + step * LENGTH_STEP, MAX_CODE_LENGTH)


async def generate_unique_code(
    is_taken: Callable[[str], Awaitable[bool]],
    *,
    length: int | None = None,
    attempts_per_length: int | None = None,
    widen_steps: int | None = None,
    generator: Callable[[int], str] = generate_code,
) -> str:
    """Draw codes until ``is_taken`` reports a free one.

    Each length gets a bounded number of attempts; on exhaustion the namespace
    is widened by ``LENGTH_STEP`` characters before giving up entirely.
    """

    per_length = attempts_per_length or settings.redemption_code_max_attempts
    total_attempts = 0
    last_length = length or settings.redemption_code_length
    for current_length in candidate_lengths(length, widen_steps):
        last_length = current_length
        for _ in range(per_length):
            total_attempts += 1
            candidate = generator(current_length)
            if not await is_taken(candidate):
                return candidate
        logger.warning(
            "Redemption code namespace congested; widening",
            code_length=current_length,
            attempts=total_attempts,
        )
    raise CodeGenerationExhausted(total_attempts, last_length)


__all__ = [
    "CODE_ALPHABET",
    "CodeGenerationExhausted",
    "candidate_lengths",
    "generate_code",
    "generate_unique_code",
    "normalize_code",
]

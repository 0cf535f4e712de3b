"""
Identifier generation for table rows.

Ids are strings made of a millisecond timestamp in base36 (zero padded so
that ids sort by creation time) followed by random hex. A prefix can be set
per table, e.g. ``tim_`` for TV interface marks.
"""

import secrets
import time
from typing import Callable, Optional

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_TIMESTAMP_WIDTH = 9


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


class IdGenerator:
    """Callable producing time-sortable string ids."""

    def __init__(
        self,
        prefix: str = "",
        random_bytes: int = 6,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.prefix = prefix
        self.random_bytes = random_bytes
        self._clock = clock or time.time

    def timestamp_part(self) -> str:
        millis = int(self._clock() * 1000)
        return to_base36(millis).rjust(_TIMESTAMP_WIDTH, "0")

    def __call__(self) -> str:
        return f"{self.prefix}{self.timestamp_part()}{secrets.token_hex(self.random_bytes)}"


default_id_generator = IdGenerator()

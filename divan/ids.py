"""Random hexadecimal identifiers for new documents."""

import random
import time

HEX_DIGITS = "0123456789abcdef"
ID_LENGTH = 32

# Seeded once per process.
_random = random.Random(time.time_ns())


def random_hex(length: int) -> str:
    """Return ``length`` random lowercase hexadecimal characters."""
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")
    return "".join(_random.choice(HEX_DIGITS) for _ in range(length))


def new_id() -> str:
    """Return a fresh document identifier."""
    return random_hex(ID_LENGTH)

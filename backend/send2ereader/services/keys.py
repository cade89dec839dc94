"""Short pairing keys.

Keys are drawn from an alphabet without look-alike symbols (no 0/O, 1/I, B/8,
Q) so they can be typed on an e-reader keyboard.
"""

from __future__ import annotations

import secrets

KEY_CHARS = "23456789ACDEFGHJKLMNPRSTUVWXYZ"
KEY_LENGTH = 4
KEY_SPACE = len(KEY_CHARS) ** KEY_LENGTH


def encode_key(number: int) -> str:
    """Encode ``number`` in base ``len(KEY_CHARS)``, most significant digit first.

    The result is left-padded with ``KEY_CHARS[0]`` so every integer in
    ``[0, KEY_SPACE)`` maps to exactly one key of ``KEY_LENGTH`` symbols.
    """
    if not 0 <= number < KEY_SPACE:
        raise ValueError(f"{number} is outside the key space [0, {KEY_SPACE})")

    base = len(KEY_CHARS)
    digits = []
    for _ in range(KEY_LENGTH):
        number, digit = divmod(number, base)
        digits.append(KEY_CHARS[digit])
    return "".join(reversed(digits))


def generate_key() -> str:
    return encode_key(secrets.randbelow(KEY_SPACE))


def normalize_key(key: str | None) -> str | None:
    """Trim and uppercase a client-supplied key; blank keys become ``None``."""
    if not isinstance(key, str):
        return None
    key = key.strip().upper()
    return key or None

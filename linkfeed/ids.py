"""Short, URL-safe random identifiers for tokens and tag URIs."""

from __future__ import annotations

import math
import secrets
from typing import Callable, List

BASE62_ALPHABET = "ModuleSymbhasOwnPr0123456789ABCDEFGHNRVfgctiUvzKqYTJkLxpZXIjQW"

RandomBytes = Callable[[int], bytes]


def generate(
    length: int,
    alphabet: str = BASE62_ALPHABET,
    random_bytes: RandomBytes = secrets.token_bytes,
) -> str:
    """Return ``length`` characters picked uniformly from ``alphabet``.

    Bytes are masked down to the smallest power of two covering the alphabet
    and values past its end are rejected, so every symbol is equally likely.
    ``random_bytes`` defaults to the OS CSPRNG; pass a seeded source in tests.
    """

    if length <= 0:
        raise ValueError("length must be positive")
    if not 2 <= len(alphabet) <= 256:
        raise ValueError("alphabet must hold between 2 and 256 symbols")

    mask = (1 << (len(alphabet) - 1).bit_length()) - 1
    step = math.ceil(1.6 * mask * length / len(alphabet))

    chars: List[str] = []
    while True:
        for byte in random_bytes(step):
            index = byte & mask
            if index < len(alphabet):
                chars.append(alphabet[index])
                if len(chars) == length:
                    return "".join(chars)


def base62(length: int, random_bytes: RandomBytes = secrets.token_bytes) -> str:
    return generate(length, BASE62_ALPHABET, random_bytes)


__all__ = ["BASE62_ALPHABET", "base62", "generate"]

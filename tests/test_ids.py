"""Tests for random identifier generation."""

import random
from collections import Counter

import pytest

from linkfeed.ids import BASE62_ALPHABET, base62, generate


def test_alphabet_has_62_distinct_symbols():
    assert len(BASE62_ALPHABET) == 62
    assert len(set(BASE62_ALPHABET)) == 62


@pytest.mark.parametrize("length", [1, 8, 16, 21, 32])
def test_generates_requested_length(length):
    assert len(base62(length)) == length


def test_rejects_non_positive_length():
    with pytest.raises(ValueError):
        generate(0)


def test_seeded_source_is_deterministic():
    first = generate(32, random_bytes=random.Random(42).randbytes)
    second = generate(32, random_bytes=random.Random(42).randbytes)
    assert first == second


def test_bytes_outside_alphabet_are_rejected():
    # 62 and 63 mask to indexes past the end of the alphabet and are skipped.
    batches = iter([bytes([62, 63, 0, 63]), bytes([1, 62, 2, 3])])
    assert generate(3, random_bytes=lambda n: next(batches)) == BASE62_ALPHABET[0:3]


def test_custom_alphabet():
    ident = generate(21, alphabet="_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ")
    assert len(ident) == 21


def test_million_ids_use_every_symbol():
    counts = Counter()
    for _ in range(1_000_000):
        counts.update(base62(10))

    assert len(counts) == 62
    assert set(counts) <= set(BASE62_ALPHABET)

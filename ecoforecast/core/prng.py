"""Deterministic pseudo-random stream seeded from a string.

The hash is djb2 over UTF-16 code units and the generator is mulberry32, so a
given seed string yields the same draws on every run and in every runtime that
implements the same two functions.
"""
from __future__ import annotations

from typing import Iterator

MASK32 = 0xFFFFFFFF
INCREMENT = 0x6D2B79F5


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


def _utf16_code_units(text: str) -> Iterator[int]:
    data = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def seed_from_string(text: str) -> int:
    h = 5381
    for unit in _utf16_code_units(text or ""):
        h = (h * 33 + unit) & MASK32
    return h


class Mulberry32:
    def __init__(self, seed: int) -> None:
        self.seed = seed & MASK32
        self._state = self.seed

    def reset(self) -> None:
        self._state = self.seed

    def next_uint32(self) -> int:
        self._state = (self._state + INCREMENT) & MASK32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK32
        return (t ^ (t >> 14)) & MASK32

    def __call__(self) -> float:
        return self.next_uint32() / 4294967296.0

    def __iter__(self) -> Iterator[float]:
        while True:
            yield self()


def stream(seed: int) -> Iterator[float]:
    return iter(Mulberry32(seed))


def rng_from_string(text: str) -> Mulberry32:
    return Mulberry32(seed_from_string(text))

from __future__ import annotations

import unittest

from ecoforecast.core.prng import Mulberry32, rng_from_string, seed_from_string, stream


class SeedTests(unittest.TestCase):
    def test_empty_string_is_djb2_offset(self) -> None:
        self.assertEqual(seed_from_string(""), 5381)

    def test_single_char(self) -> None:
        self.assertEqual(seed_from_string("a"), 5381 * 33 + 97)

    def test_hashes_utf16_code_units(self) -> None:
        # U+1F600 is the surrogate pair D83D DE00.
        expected = ((5381 * 33 + 0xD83D) * 33 + 0xDE00) & 0xFFFFFFFF
        self.assertEqual(seed_from_string("\U0001F600"), expected)

    def test_long_input_wraps_to_32_bits(self) -> None:
        seed = seed_from_string("tariff " * 500)
        self.assertGreaterEqual(seed, 0)
        self.assertLess(seed, 2**32)


class StreamTests(unittest.TestCase):
    def test_same_seed_same_draws(self) -> None:
        a = rng_from_string("10% steel tariff|Phoenix, AZ|3313")
        b = rng_from_string("10% steel tariff|Phoenix, AZ|3313")
        self.assertEqual([a() for _ in range(20)], [b() for _ in range(20)])

    def test_draws_in_unit_interval(self) -> None:
        rng = Mulberry32(123456789)
        for _ in range(1000):
            value = rng()
            self.assertGreaterEqual(value, 0.0)
            self.assertLess(value, 1.0)

    def test_reset_replays_stream(self) -> None:
        rng = Mulberry32(42)
        first = [rng() for _ in range(5)]
        rng.reset()
        self.assertEqual([rng() for _ in range(5)], first)

    def test_stream_helper_matches_generator(self) -> None:
        draws = stream(7)
        rng = Mulberry32(7)
        self.assertEqual([next(draws) for _ in range(5)], [rng() for _ in range(5)])

    def test_different_seeds_diverge(self) -> None:
        self.assertNotEqual(Mulberry32(1)(), Mulberry32(2)())

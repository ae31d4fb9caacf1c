import random
import unittest

from memebot.variants import select_variant


class _ExplodingRandom(random.Random):
    def randrange(self, *args, **kwargs):  # pragma: no cover - must not be called
        raise AssertionError("single variant must not draw randomness")


class VariantSelectorTests(unittest.TestCase):
    def test_single_variant_skips_the_rng(self) -> None:
        self.assertEqual(select_variant(1, _ExplodingRandom()), 0)

    def test_index_always_in_range(self) -> None:
        rng = random.Random(7)
        for _ in range(500):
            self.assertIn(select_variant(3, rng), (0, 1, 2))

    def test_two_variants_are_roughly_uniform(self) -> None:
        rng = random.Random(1234)
        draws = [select_variant(2, rng) for _ in range(10_000)]
        share = draws.count(0) / len(draws)
        self.assertAlmostEqual(share, 0.5, delta=0.03)

    def test_invalid_count_rejected(self) -> None:
        with self.assertRaises(ValueError):
            select_variant(0)


if __name__ == "__main__":
    unittest.main()

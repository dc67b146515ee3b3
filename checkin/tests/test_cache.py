import unittest

from checkin.cache import DEFAULT_TTL_MS, TtlCache


class FakeClock:
    """Counts whole milliseconds so expiry boundaries are exact."""

    def __init__(self, now_ms: int = 1_000_000):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms / 1000

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


class TtlCacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TtlCache(clock=self.clock)

    def test_get_after_set_returns_value(self):
        self.cache.set("k", {"a": 1}, 5000)
        self.assertEqual(self.cache.get("k"), {"a": 1})

    def test_missing_key_is_absent(self):
        self.assertIsNone(self.cache.get("nope"))

    def test_entry_expires_and_is_evicted_on_read(self):
        self.cache.set("k", "v", 5000)
        self.clock.advance_ms(4999)
        self.assertEqual(self.cache.get("k"), "v")

        self.clock.advance_ms(1)
        self.assertIn("k", self.cache.keys())
        self.assertIsNone(self.cache.get("k"))
        self.assertNotIn("k", self.cache.keys())

    def test_default_ttl(self):
        self.cache.set("k", "v")
        self.clock.advance_ms(DEFAULT_TTL_MS - 1)
        self.assertEqual(self.cache.get("k"), "v")
        self.clock.advance_ms(1)
        self.assertIsNone(self.cache.get("k"))

    def test_set_overwrites_and_restarts_ttl(self):
        self.cache.set("k", "old", 1000)
        self.clock.advance_ms(900)
        self.cache.set("k", "new", 1000)
        self.clock.advance_ms(900)
        self.assertEqual(self.cache.get("k"), "new")

    def test_delete(self):
        self.cache.set("k", "v")
        self.cache.delete("k")
        self.assertIsNone(self.cache.get("k"))
        # Deleting an absent key is a no-op.
        self.cache.delete("k")

    def test_clear(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertIsNone(self.cache.get("a"))

    def test_falsy_values_are_hits(self):
        self.cache.set("empty", [])
        self.assertEqual(self.cache.get("empty"), [])


if __name__ == "__main__":
    unittest.main()

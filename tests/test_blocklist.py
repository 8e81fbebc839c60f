import unittest

from engine.blocklist import Blocklist, normalize


class TestNormalize(unittest.TestCase):

    def test_lowercases_and_trims(self):
        self.assertEqual(normalize("  YouTube.COM \t"), "youtube.com")


class TestBlocklist(unittest.TestCase):

    def test_build_normalizes_entries(self):
        bl = Blocklist.build(["Example.com ", " TWITTER.com"])
        self.assertEqual(bl.entries, ["example.com", "twitter.com"])

    def test_empty_input_matches_nothing(self):
        bl = Blocklist.build([])
        self.assertEqual(len(bl), 0)
        self.assertFalse(bl)
        self.assertFalse(bl.matches("example.com"))
        self.assertFalse(bl.matches(""))

    def test_blank_entries_are_dropped(self):
        bl = Blocklist.build(["", "   ", "example.com"])
        self.assertEqual(bl.entries, ["example.com"])
        self.assertFalse(bl.matches("other.org"))

    def test_matches_subdomains_case_insensitively(self):
        bl = Blocklist.build(["example.com"])
        self.assertTrue(bl.matches("example.com"))
        self.assertTrue(bl.matches("www.example.com"))
        self.assertTrue(bl.matches("Sub.EXAMPLE.com"))
        self.assertFalse(bl.matches("other.org"))

    def test_substring_match_over_blocks(self):
        bl = Blocklist.build(["x.com"])
        self.assertTrue(bl.matches("foox.com"))
        self.assertTrue(bl.matches("x.com.evil.net"))

    def test_any_entry_matches(self):
        bl = Blocklist.build(["instagram.com", "youtube.com"])
        self.assertTrue(bl.matches("m.youtube.com"))
        self.assertTrue(bl.matches("instagram.com"))
        self.assertFalse(bl.matches("github.com"))

    def test_duplicates_collapse(self):
        bl = Blocklist.build(["a.com", "A.com", " a.com "])
        self.assertEqual(len(bl), 1)
        self.assertEqual(list(bl), ["a.com"])


if __name__ == '__main__':
    unittest.main()

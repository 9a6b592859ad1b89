import unittest

from app.core.param_pollution import collapse_repeated_params

WHITELIST = ["duration", "price", "difficulty"]


class CollapseRepeatedParamsTests(unittest.TestCase):
    def test_repeated_non_whitelisted_param_keeps_last_value(self):
        cleaned, polluted = collapse_repeated_params([("sort", "price"), ("sort", "-price")], WHITELIST)
        self.assertEqual(cleaned, [("sort", "-price")])
        self.assertEqual(polluted, {"sort": ["price", "-price"]})

    def test_whitelisted_param_keeps_every_value(self):
        items = [("duration", "5"), ("duration", "9")]
        cleaned, polluted = collapse_repeated_params(items, WHITELIST)
        self.assertEqual(cleaned, items)
        self.assertEqual(polluted, {})

    def test_bracketed_key_uses_its_base_name(self):
        items = [("price[gte]", "100"), ("price[gte]", "200"), ("limit[x]", "1"), ("limit[x]", "2")]
        cleaned, polluted = collapse_repeated_params(items, WHITELIST)
        self.assertEqual(cleaned, [("price[gte]", "100"), ("price[gte]", "200"), ("limit[x]", "2")])
        self.assertEqual(list(polluted), ["limit[x]"])

    def test_single_values_are_untouched(self):
        items = [("page", "2"), ("difficulty", "easy")]
        self.assertEqual(collapse_repeated_params(items, WHITELIST), (items, {}))


if __name__ == "__main__":
    unittest.main()

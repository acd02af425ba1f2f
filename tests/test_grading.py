import unittest

from termreport.core.errors import ConfigError, ValidationError
from termreport.core.grades import GradingScheme, load_grading_scheme


class GradingTests(unittest.TestCase):
    def test_boundary_is_inclusive(self):
        scheme = GradingScheme([[80, "A"], [70, "B"], [0, "F"]])
        self.assertEqual(scheme.resolve(79), "B")
        self.assertEqual(scheme.resolve(79.9), "B")
        self.assertEqual(scheme.resolve(80), "A")
        self.assertEqual(scheme.resolve(0), "F")
        self.assertEqual(scheme.resolve(100), "A")

    def test_every_total_gets_one_grade(self):
        scheme = GradingScheme.default()
        labels = {band.grade for band in scheme.bands}
        for total in range(0, 101):
            self.assertIn(scheme.resolve(total), labels)
        self.assertEqual(scheme.resolve(95), "A+")
        self.assertEqual(scheme.band_for(49.9).remarks, "Fail")

    def test_ascending_boundaries_are_accepted(self):
        scheme = GradingScheme([(0, "F"), (50, "P"), (75, "D")])
        self.assertEqual([b.grade for b in scheme.bands], ["D", "P", "F"])
        self.assertEqual(scheme.resolve(60), "P")

    def test_non_monotonic_boundaries_rejected(self):
        with self.assertRaises(ConfigError):
            GradingScheme([[80, "A"], [90, "A+"], [0, "F"]])

    def test_boundaries_must_start_at_zero(self):
        with self.assertRaises(ConfigError):
            GradingScheme([[80, "A"], [10, "E"]])

    def test_out_of_range_total(self):
        scheme = GradingScheme.default()
        with self.assertRaises(ValidationError):
            scheme.resolve(100.5)
        with self.assertRaises(ValidationError):
            scheme.resolve(-1)

    def test_ranges_parse(self):
        scheme = GradingScheme.from_ranges(
            [
                {"grade": "F", "range": "0-49", "remarks": "Fail"},
                {"grade": "A", "range": "80-100", "remarks": "Very Good"},
                {"grade": "C", "range": "50-79", "remarks": "Pass"},
            ]
        )
        self.assertEqual(scheme.resolve(79.5), "C")
        self.assertEqual(scheme.band_for(85).remarks, "Very Good")
        self.assertEqual(scheme.resolve(49), "F")

    def test_ranges_with_gap_rejected(self):
        with self.assertRaises(ConfigError):
            GradingScheme.from_ranges([{"grade": "A", "range": "80-100"}, {"grade": "F", "range": "0-70"}])

    def test_overlapping_ranges_rejected(self):
        with self.assertRaises(ConfigError):
            GradingScheme.from_ranges([{"grade": "A", "range": "80-100"}, {"grade": "B", "range": "0-85"}])

    def test_load_from_json(self):
        self.assertEqual(load_grading_scheme("").resolve(72), "B")
        scheme = load_grading_scheme('[{"min_score": 50, "grade": "P"}, {"min_score": 0, "grade": "F"}]')
        self.assertEqual(scheme.resolve(50), "P")
        with self.assertRaises(ConfigError):
            load_grading_scheme("{not json")


if __name__ == "__main__":
    unittest.main()

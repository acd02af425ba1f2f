import os
import unittest
from unittest import mock

from termreport.config.settings import _env_float
from termreport.core.errors import ConfigError


class SettingsTests(unittest.TestCase):
    def test_blank_value_uses_default(self):
        with mock.patch.dict(os.environ, {"TERMREPORT_SBA_MAX_SCORE": "  "}):
            self.assertEqual(_env_float("TERMREPORT_SBA_MAX_SCORE", 50.0), 50.0)

    def test_number_is_parsed(self):
        with mock.patch.dict(os.environ, {"TERMREPORT_SBA_MAX_SCORE": "40"}):
            self.assertEqual(_env_float("TERMREPORT_SBA_MAX_SCORE", 50.0), 40.0)

    def test_malformed_number_is_rejected(self):
        with mock.patch.dict(os.environ, {"TERMREPORT_SBA_MAX_SCORE": "4O"}):
            with self.assertRaises(ConfigError):
                _env_float("TERMREPORT_SBA_MAX_SCORE", 50.0)


if __name__ == "__main__":
    unittest.main()

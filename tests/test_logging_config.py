import tempfile
import unittest
from pathlib import Path

from loguru import logger

from opencode_state.logging_config import setup_logging


class SetupLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        logger.remove()

    def test_default_is_console(self) -> None:
        self.assertEqual(["console (stderr, INFO)"], setup_logging())

    def test_per_consumer_level_and_unknown_type(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "logs" / "state.log")
            descriptions = setup_logging(
                "WARNING",
                [
                    {"type": "console", "package_only": True},
                    {"type": "file", "path": path, "level": "DEBUG", "serialize": True},
                    {"type": "syslog"},
                ],
            )
            self.assertEqual(
                [
                    "console (stderr, WARNING, package only)",
                    f"file ({path}, json, DEBUG)",
                ],
                descriptions,
            )
            logger.debug("written to the file sink")
            logger.remove()
            self.assertIn("written to the file sink", Path(path).read_text(encoding="utf-8"))

    def test_disabled_consumer_skipped(self) -> None:
        self.assertEqual([], setup_logging("info", [{"type": "console", "enabled": False}]))

    def test_unknown_level_raises(self) -> None:
        with self.assertRaises(ValueError):
            setup_logging("LOUD")


if __name__ == "__main__":
    unittest.main()

import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path

import structlog

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from updown_paper.utils.logger import configure_logging, get_logger


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        for handler in logging.root.handlers[:]:
            handler.close()
            logging.root.removeHandler(handler)
        structlog.reset_defaults()
        self._tmp.cleanup()

    def test_json_lines_to_log_file(self):
        log_file = Path(self._tmp.name) / "logs" / "paper.log"
        configure_logging(level="INFO", json_output=True, log_file=str(log_file))

        get_logger("paper.test").info("paper_position_opened", side="UP", entry_price=0.4)
        for handler in logging.root.handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        record = json.loads(line)
        self.assertEqual(record["event"], "paper_position_opened")
        self.assertEqual(record["side"], "UP")
        self.assertEqual(record["level"], "info")
        self.assertEqual(record["logger"], "paper.test")
        self.assertIn("timestamp", record)

    def test_access_loggers_quieted(self):
        configure_logging(level="DEBUG", json_output=False)
        self.assertEqual(logging.getLogger("uvicorn.access").level, logging.WARNING)
        self.assertEqual(logging.root.level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()

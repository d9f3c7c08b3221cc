"""Tests for structured logging with scan context."""

import json
import logging
from contextlib import contextmanager

from junktrunk.logging_config import get_logger, setup_logging


@contextmanager
def configured_logging(base_dir):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    setup_logging(base_dir)
    try:
        yield base_dir / "logs"
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def read_lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestScanLogging:
    def test_json_lines_carry_scan_context(self, tmp_path):
        with configured_logging(tmp_path) as logs:
            log = get_logger("junktrunk.tests", barcode="012345678905")
            log.bind(stage="food").info("Looking up food catalog")
            lines = read_lines(logs / "app.log")

        entry = lines[-1]
        assert entry["message"] == "Looking up food catalog"
        assert entry["barcode"] == "012345678905"
        assert entry["stage"] == "food"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "junktrunk.tests"
        assert entry["origin"].startswith("test_logging.py:")
        assert "scan" not in entry

    def test_records_outside_a_scan_omit_context(self, tmp_path):
        with configured_logging(tmp_path) as logs:
            logging.getLogger("junktrunk.tests").info("Starting")
            entry = read_lines(logs / "app.log")[-1]

        assert entry["message"] == "Starting"
        assert "barcode" not in entry
        assert "stage" not in entry

    def test_errors_also_go_to_error_log(self, tmp_path):
        with configured_logging(tmp_path) as logs:
            log = get_logger("junktrunk.tests", barcode="1")
            log.info("fine")
            log.error("broken")
            errors = read_lines(logs / "error.log")

        assert [e["message"] for e in errors] == ["broken"]
        assert errors[0]["barcode"] == "1"

    def test_console_shows_scan(self, tmp_path, capsys):
        with configured_logging(tmp_path):
            get_logger("junktrunk.tests", barcode="42", stage="auction").info("hello")
            logging.getLogger("junktrunk.tests").info("idle")

        out = capsys.readouterr().out
        assert "[42/auction] hello" in out
        assert "[-] idle" in out


class TestScanLogger:
    def test_bind_layers_context(self):
        log = get_logger("junktrunk.tests", barcode="1", stage="primary")
        bound = log.bind(stage="web_search")

        assert bound.extra == {"barcode": "1", "stage": "web_search"}
        assert log.extra == {"barcode": "1", "stage": "primary"}

    def test_call_extra_overrides_bound_context(self):
        log = get_logger("junktrunk.tests", barcode="1")
        _, kwargs = log.process("msg", {"extra": {"barcode": "2", "attempt": 3}})
        assert kwargs["extra"] == {"barcode": "2", "attempt": 3}

"""
Tests for observability — logging setup.
"""

import logging
from pathlib import Path

import pytest

from converge.core.observability.logging_config import parse_level, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParseLevel:
    @pytest.mark.parametrize(
        "name, expected",
        [("debug", logging.DEBUG), ("INFO", logging.INFO), ("Error", logging.ERROR)],
    )
    def test_known(self, name, expected):
        assert parse_level(name) == expected

    @pytest.mark.parametrize("name", [None, "", "loud", "basicConfig"])
    def test_unknown_falls_back_to_warning(self, name):
        assert parse_level(name) == logging.WARNING


class TestSetupLogging:
    def test_console_only(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_repeat_calls_do_not_stack_handlers(self):
        setup_logging("INFO")
        setup_logging("WARNING")
        assert len(logging.getLogger().handlers) == 1

    def test_file_handler_gets_its_own_level(self, tmp_path: Path):
        log_file = tmp_path / "converge.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG

        logging.getLogger("converge.test").debug("written to file only")
        for handler in root.handlers:
            handler.flush()
        assert "written to file only" in log_file.read_text()

    def test_sdk_loggers_quieted(self):
        logging.getLogger("botocore").setLevel(logging.DEBUG)
        setup_logging("INFO")
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_sdk_loggers_left_alone_at_debug(self):
        logging.getLogger("botocore").setLevel(logging.NOTSET)
        setup_logging("DEBUG")
        assert logging.getLogger("botocore").level == logging.NOTSET

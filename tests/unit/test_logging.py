"""Unit tests for the logging setup and console colouring."""

import logging
from pathlib import Path

import pytest
from dir_mirror import (
    LOG_DATEFMT,
    LOG_FMT,
    LOGGER_NAME,
    Ansi,
    ColorizingFormatter,
    close_logger,
    log_action,
    setup_logger,
)


@pytest.fixture
def mirror_logger(tmp_path: Path):
    """The real dir_mirror logger writing to a temporary file."""
    log_file = tmp_path / "logs" / "mirror.log"
    log = setup_logger(log_file)
    yield log, log_file
    close_logger(log)


def make_record(level: int, msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("dir_mirror", level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSetupLogger:
    """Tests for setup_logger."""

    def test_file_gets_plain_lines_with_location(self, mirror_logger) -> None:
        """Each file line carries severity, message and code location."""
        log, log_file = mirror_logger

        log.warning("disk is slow")

        lines = log_file.read_text().splitlines()
        assert lines[0].endswith(f"Logging to: {log_file}")
        assert " | WARNING: disk is slow (FROM: test_logging.py:" in lines[-1]

    def test_critical_is_named_fatal(self, mirror_logger) -> None:
        """The highest severity is rendered as FATAL."""
        log, log_file = mirror_logger

        log.critical("cannot continue")

        assert "FATAL: cannot continue" in log_file.read_text()

    def test_debug_hidden_by_default(self, mirror_logger) -> None:
        """DEBUG records are dropped unless debug is enabled."""
        log, log_file = mirror_logger

        log.debug("noise")

        assert "noise" not in log_file.read_text()

    def test_debug_enabled(self, tmp_path: Path) -> None:
        """debug=True lets DEBUG records through."""
        log_file = tmp_path / "mirror.log"
        log = setup_logger(log_file, debug=True)
        try:
            log.debug("details")
        finally:
            close_logger(log)

        assert "DEBUG: details" in log_file.read_text()

    def test_setup_is_not_duplicated(self, mirror_logger) -> None:
        """A second setup call reuses the existing handlers."""
        log, log_file = mirror_logger

        again = setup_logger(log_file)

        assert again is log
        assert len(log.handlers) == 2

    def test_logger_does_not_propagate(self, mirror_logger) -> None:
        """Records stay on the dir_mirror handlers."""
        log, _ = mirror_logger
        assert log.name == LOGGER_NAME
        assert log.propagate is False

    def test_close_logger_removes_handlers(self, tmp_path: Path) -> None:
        """close_logger detaches every handler."""
        log = setup_logger(tmp_path / "mirror.log")

        close_logger(log)

        assert log.handlers == []


class TestColorizingFormatter:
    """Tests for ColorizingFormatter."""

    def test_plain_when_disabled(self) -> None:
        """No escape codes when colour is off."""
        fmt = ColorizingFormatter(use_color=False, fmt=LOG_FMT, datefmt=LOG_DATEFMT)

        out = fmt.format(make_record(logging.ERROR, "boom"))

        assert "\x1b[" not in out
        assert out.endswith("ERROR: boom")

    def test_severity_colour_wraps_line(self) -> None:
        """Warnings are wrapped in the warning colour."""
        fmt = ColorizingFormatter(use_color=True, fmt=LOG_FMT, datefmt=LOG_DATEFMT)

        out = fmt.format(make_record(logging.WARNING, "careful"))

        assert out.startswith(Ansi.YELLOW)
        assert out.endswith(Ansi.RESET)

    def test_action_and_path_highlighted(self) -> None:
        """INFO action records colour the verb and the path."""
        fmt = ColorizingFormatter(use_color=True, fmt=LOG_FMT, datefmt=LOG_DATEFMT)
        record = make_record(
            logging.INFO,
            "Directory d has been created in Replica | /src/d",
            action="created",
            path_text="/src/d",
            is_dir=True,
        )

        out = fmt.format(record)

        assert f"{Ansi.GREEN}created{Ansi.RESET}" in out
        assert f"{Ansi.LIGHT_BROWN}/src/d{Ansi.RESET}" in out


class TestLogAction:
    """Tests for log_action."""

    def test_extras_attached(self, tmp_path: Path, caplog) -> None:
        """The action, path text and directory flag ride along on the record."""
        log = logging.getLogger("dir_mirror_tests")
        target = tmp_path / "d"
        target.mkdir()

        with caplog.at_level(logging.INFO, logger="dir_mirror_tests"):
            log_action(log, "deleted", "gone", path=target)

        record = caplog.records[0]
        assert record.action == "deleted"
        assert record.path_text == str(target)
        assert record.is_dir is True

    def test_level_is_honoured(self, caplog) -> None:
        """The requested severity is used."""
        log = logging.getLogger("dir_mirror_tests")

        with caplog.at_level(logging.INFO, logger="dir_mirror_tests"):
            log_action(log, "created", "odd", level=logging.WARNING)

        assert caplog.records[0].levelno == logging.WARNING

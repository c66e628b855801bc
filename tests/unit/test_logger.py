from unittest.mock import patch

import structlog

from citefix.main import setup_logger
from citefix.utils.logger import LogContext, configure_from_settings, get_logger, setup_logging


def test_setup_logging():
    # Calling it shouldn't crash
    setup_logging(level="DEBUG", json_format=False)
    setup_logging(level="INFO", json_format=True)


def test_setup_logging_with_file(tmp_path):
    setup_logging(level="INFO", json_format=True, log_file=str(tmp_path / "citefix.log"))


def test_configure_from_settings(settings):
    with patch("citefix.utils.logger.setup_logging") as mock_setup:
        configure_from_settings(settings)
        configure_from_settings(settings, level="DEBUG")

    assert mock_setup.call_args_list[0].kwargs == {"level": settings.log_level, "json_format": settings.log_json}
    assert mock_setup.call_args_list[1].kwargs["level"] == "DEBUG"


def test_cli_logger_applies_settings(settings):
    with patch("citefix.main.configure_from_settings") as mock_configure:
        setup_logger(True, settings)
        setup_logger(False, settings)

    assert mock_configure.call_args_list[0].args == (settings,)
    assert mock_configure.call_args_list[0].kwargs == {"level": "DEBUG"}
    assert mock_configure.call_args_list[1].kwargs == {"level": "WARNING"}


def test_get_logger():
    logger = get_logger("test_module")
    assert logger is not None
    logger.info("test message", key="value")


def test_log_context_binds_and_resets():
    with LogContext(job_id="cf_1_abc", stage="discovery", skipped=None):
        bound = structlog.contextvars.get_contextvars()
        assert bound["job_id"] == "cf_1_abc"
        assert bound["stage"] == "discovery"
        assert "skipped" not in bound
    assert "job_id" not in structlog.contextvars.get_contextvars()

"""Unit tests for obsguard/utils/logger.py."""

from __future__ import annotations

import pytest
import structlog
from structlog.testing import capture_logs

from obsguard.utils.logger import PerformanceLogger, clear_request_id, get_logger, set_request_id


def test_request_id_bound_and_cleared() -> None:
    set_request_id("01HREQUEST")
    assert structlog.contextvars.get_contextvars()["request_id"] == "01HREQUEST"
    clear_request_id()
    assert "request_id" not in structlog.contextvars.get_contextvars()


class TestPerformanceLogger:
    def test_slow_block_logs_warning(self) -> None:
        with capture_logs() as logs:
            with PerformanceLogger("secret store load", get_logger("perf"), warn_after_ms=-1.0):
                pass
        assert logs[0]["event"] == "secret store load slow"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["duration_ms"] >= 0

    def test_failure_logged_and_propagated(self) -> None:
        with capture_logs() as logs:
            with pytest.raises(OSError):
                with PerformanceLogger("secret store load", get_logger("perf")):
                    raise OSError("disk gone")
        assert logs[0]["event"] == "secret store load failed"
        assert logs[0]["error_type"] == "OSError"

"""Tests for structured logging and session context."""

import json
import logging

import pytest


# ═══════════════════════════════════════════════════════════════════════
# Test: SessionContext
# ═══════════════════════════════════════════════════════════════════════


class TestSessionContext:

    def test_binds_and_resets(self):
        from src.logging_config import SessionContext, get_context_dict
        assert get_context_dict() == {}
        with SessionContext(account="12345678") as ctx:
            bound = get_context_dict()
            assert bound["account"] == "12345678"
            assert bound["session_id"] == ctx.session_id
            assert len(ctx.session_id) == 12
        assert get_context_dict() == {}

    def test_bind_extra(self):
        from src.logging_config import SessionContext, get_context_dict
        with SessionContext(session_id="abc") as ctx:
            ctx.bind(stream="LEVELONE_EQUITIES")
            assert get_context_dict()["stream"] == "LEVELONE_EQUITIES"
        assert "stream" not in get_context_dict()

    def test_nested_contexts(self):
        from src.logging_config import SessionContext
        from src.logging_config.context import get_session_id
        with SessionContext(session_id="outer"):
            with SessionContext(session_id="inner"):
                assert get_session_id() == "inner"
            assert get_session_id() == "outer"


# ═══════════════════════════════════════════════════════════════════════
# Test: Formatters / setup
# ═══════════════════════════════════════════════════════════════════════


def _record(message="hello", **extra):
    record = logging.LogRecord("src.schwab_gateway.gateway", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_structured_formatter(self):
        from src.logging_config import SessionContext
        from src.logging_config.setup import StructuredFormatter
        formatter = StructuredFormatter(include_caller=False)
        with SessionContext(session_id="s1", account="12345678"):
            entry = json.loads(formatter.format(_record(duration_ms=12.5)))
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["service"] == "schwab-gateway"
        assert entry["session_id"] == "s1"
        assert entry["account"] == "12345678"
        assert entry["duration_ms"] == 12.5
        assert "function" not in entry

    def test_console_formatter(self):
        from src.logging_config.setup import ConsoleFormatter
        line = ConsoleFormatter().format(_record())
        assert "INFO" in line
        assert "src.schwab_gateway.gateway: hello" in line

    def test_configure_logging_explicit(self):
        from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
        from src.logging_config.setup import ConsoleFormatter
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            config = configure_logging(LoggingConfig(level=LogLevel.DEBUG, format=LogFormat.CONSOLE))
            assert config.level == LogLevel.DEBUG
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, ConsoleFormatter)
            assert logging.getLogger("websockets").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_configure_logging_from_settings(self, monkeypatch):
        from src.logging_config import LogFormat, LogLevel, configure_logging
        from src.settings import get_settings
        monkeypatch.setenv("SCHWAB_LOG_LEVEL", "warning")
        monkeypatch.setenv("SCHWAB_LOG_FORMAT", "console")
        get_settings.cache_clear()
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            config = configure_logging()
            assert config.level == LogLevel.WARNING
            assert config.format == LogFormat.CONSOLE
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            get_settings.cache_clear()


# ═══════════════════════════════════════════════════════════════════════
# Test: log_performance
# ═══════════════════════════════════════════════════════════════════════


class TestLogPerformance:

    @pytest.mark.asyncio
    async def test_fast_call_logs_debug(self, caplog):
        from src.logging_config import log_performance

        @log_performance(threshold_ms=10_000, logger_name="perf.test")
        async def work():
            return 7

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            assert await work() == 7
        assert caplog.records[-1].levelno == logging.DEBUG
        assert "completed" in caplog.records[-1].getMessage()

    @pytest.mark.asyncio
    async def test_slow_call_logs_warning(self, caplog):
        from src.logging_config import log_performance

        @log_performance(threshold_ms=0, logger_name="perf.test")
        async def work():
            return None

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            await work()
        assert caplog.records[-1].levelno == logging.WARNING

    @pytest.mark.asyncio
    async def test_failure_propagates(self, caplog):
        from src.logging_config import log_performance

        @log_performance(logger_name="perf.test")
        async def work():
            raise ValueError("boom")

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            with pytest.raises(ValueError):
                await work()
        assert "failed" in caplog.records[-1].getMessage()

    def test_rejects_sync_function(self):
        from src.logging_config import log_performance
        with pytest.raises(TypeError):
            log_performance()(lambda: None)

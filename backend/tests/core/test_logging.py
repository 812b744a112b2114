"""JSON log formatting."""

import json
import logging

from balloonfuse.core.logging import JsonLogFormatter, configure_logging


class TestJsonLogFormatter:
    def setup_method(self) -> None:
        self.formatter = JsonLogFormatter()

    def _record(self, msg: str, **extra) -> logging.LogRecord:
        record = logging.LogRecord("balloonfuse.test", logging.WARNING, __file__, 1, msg, (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_event_and_extras_are_fields(self) -> None:
        payload = json.loads(self.formatter.format(self._record("semantic_retry", attempt=2, status=503)))

        assert payload["message"] == "semantic_retry"
        assert payload["level"] == "warning"
        assert payload["logger"] == "balloonfuse.test"
        assert payload["attempt"] == 2
        assert payload["status"] == 503
        assert "args" not in payload

    def test_unserializable_extras_are_stringified(self) -> None:
        payload = json.loads(self.formatter.format(self._record("x", path=object())))
        assert isinstance(payload["path"], str)


class TestConfigureLogging:
    def test_installs_single_json_handler_and_quiets_libraries(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging("debug")
            configure_logging("debug")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonLogFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

"""
Log formatter and configure_logging tests.
"""

import json
import logging

import pytest
from flask import Flask

from qms.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    configure_logging,
    record_context,
)


def _record(msg="Approved %s", args=("IDEA-0001",), **extra):
    record = logging.LogRecord("qms.services.workflow", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_carries_workflow_context(self):
        record = _record(entity_type="improvement_ideas", entity_id=7, action="approve", ignored="x")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["msg"] == "Approved IDEA-0001"
        assert entry["level"] == "INFO"
        assert entry["entity_type"] == "improvement_ideas"
        assert entry["entity_id"] == 7
        assert entry["action"] == "approve"
        assert "ignored" not in entry

    def test_empty_context_is_dropped(self):
        assert record_context(_record(request_id="", user_id=None, status=200)) == {"status": 200}

    def test_readable_suffixes(self):
        line = ReadableFormatter().format(_record(request_id="abc123", entity_type="capas", entity_id=3))
        assert line.endswith("Approved IDEA-0001 [rid=abc123] [capas#3]")


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def _app(self, **config):
        app = Flask(__name__)
        app.config.update(config)
        return app

    def test_production_defaults_to_json(self):
        app = self._app(DEBUG=False, TESTING=False)
        configure_logging(app)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.INFO

    def test_explicit_format_and_level(self):
        app = self._app(TESTING=True, LOG_FORMAT="json", LOG_LEVEL="warning")
        configure_logging(app)
        configure_logging(app)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(self._app(TESTING=True, LOG_LEVEL="chatty"))
        assert logging.getLogger().level == logging.INFO
        assert isinstance(logging.getLogger().handlers[0].formatter, ReadableFormatter)

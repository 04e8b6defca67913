"""
Tests for the application factory, configuration and log formatting.
"""

import json
import logging

import pytest

from workgraph.config import ProductionConfig
from workgraph.middleware.logging_config import JSONFormatter, ReadableFormatter


class TestConfig:
    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SQLALCHEMY_DATABASE_URI"] == "sqlite:///:memory:"
        assert app.config["MAX_HIERARCHY_DEPTH"] == 3
        assert set(app.config["DEPENDENCY_ACYCLIC_KINDS"]) == {"blocks", "enables", "informs"}

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            ProductionConfig()

    def test_cli_commands_registered(self, app):
        assert "show-tree" in app.cli.commands
        assert "cache-health" in app.cli.commands


class TestShowTreeCommand:
    def test_prints_hierarchy(self, app, tree):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["show-tree"])
        assert result.exit_code == 0
        assert "Root (product_line, active)" in result.output
        assert "    [" in result.output


def _record(**extra):
    record = logging.LogRecord("workgraph.test", logging.INFO, __file__, 1, "Edge added", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_lifts_context_fields(self):
        payload = json.loads(JSONFormatter().format(_record(graph="release", node_id=4)))
        assert payload["message"] == "Edge added"
        assert payload["graph"] == "release"
        assert payload["node_id"] == 4
        assert "workstream_id" not in payload

    def test_readable_appends_context(self):
        line = ReadableFormatter().format(_record(workstream_id=9))
        assert "Edge added" in line
        assert "workstream_id=9" in line

"""Tests for structured log output."""

import json
import logging
import sys

import pytest

from gated_deployments.logging import JSONFormatter, TextFormatter, context_fields, parse_level, setup_logging


def _record(msg="Experiment failed", exc_info=None, **extra):
    record = logging.LogRecord(
        name="gated_deployments.deployment_watcher",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_single_line_json(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "gated_deployments.deployment_watcher"
        assert entry["message"] == "Experiment failed"
        assert entry["timestamp"].endswith("+00:00")

    def test_prefixed_extras_are_included(self):
        entry = json.loads(JSONFormatter().format(
            _record(gd_gated_deployment_id="default/svc", other="dropped")
        ))
        assert entry["gd_gated_deployment_id"] == "default/svc"
        assert "other" not in entry

    def test_exception_is_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            entry = json.loads(JSONFormatter().format(_record(exc_info=sys.exc_info())))
        assert "RuntimeError: boom" in entry["exception"]


class TestTextFormatter:
    def test_context_is_appended(self):
        line = TextFormatter().format(_record(gd_gated_deployment_id="default/svc", gd_decision="FAIL"))
        assert line.endswith("Experiment failed [gated_deployment_id=default/svc decision=FAIL]")

    def test_plain_line_without_context(self):
        line = TextFormatter().format(_record(other="dropped"))
        assert line.endswith("gated_deployments.deployment_watcher: Experiment failed")

    def test_context_stays_on_first_line_of_traceback(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            line = TextFormatter().format(_record(exc_info=sys.exc_info(), gd_resource_id="default/svc"))
        first, _, rest = line.partition("\n")
        assert first.endswith("[resource_id=default/svc]")
        assert "RuntimeError: boom" in rest


def test_context_fields_keep_only_prefixed_extras():
    record = _record(gd_watcher="GatedDeploymentWatcher", gd_resource_id="default/svc", user="x")
    assert context_fields(record) == {
        "gd_watcher": "GatedDeploymentWatcher",
        "gd_resource_id": "default/svc",
    }


@pytest.mark.parametrize("name, level", [
    ("trace", logging.DEBUG),
    ("debug", logging.DEBUG),
    ("INFO", logging.INFO),
    ("warn", logging.WARNING),
    ("error", logging.ERROR),
    ("fatal", logging.CRITICAL),
    ("nonsense", logging.INFO),
])
def test_parse_level(name, level):
    assert parse_level(name) == level


def test_setup_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("json", logging.WARNING)
        setup_logging("text", logging.DEBUG)
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, TextFormatter)

        setup_logging("json")
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

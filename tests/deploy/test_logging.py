"""Tests for JSON logging with run and stage context."""

from __future__ import annotations

import json
import logging
import sys

from src.shared.logging import JSONFormatter, run_id_var, setup_logging, stage_var


def _record(msg: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="src.deploy_orchestrator.pipeline",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_includes_context_vars(self) -> None:
        run_token = run_id_var.set("run-123")
        stage_token = stage_var.set("plan")
        try:
            entry = json.loads(JSONFormatter("deploy-orchestrator").format(_record()))
        finally:
            stage_var.reset(stage_token)
            run_id_var.reset(run_token)

        assert entry["service_name"] == "deploy-orchestrator"
        assert entry["run_id"] == "run-123"
        assert entry["stage"] == "plan"
        assert entry["message"] == "hello"
        assert entry["logger"] == "src.deploy_orchestrator.pipeline"

    def test_context_empty_outside_run(self) -> None:
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["run_id"] == ""
        assert entry["stage"] == ""

    def test_exception_text(self) -> None:
        try:
            raise ValueError("bad plan")
        except ValueError:
            entry = json.loads(JSONFormatter().format(_record(exc_info=sys.exc_info())))
        assert entry["exception"] == "bad plan"


class TestSetupLogging:
    def test_configures_package_logger(self) -> None:
        logger = setup_logging("deploy-orchestrator", level="debug")
        try:
            assert logger.name == "src"
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 1
            assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)

    def test_plain_output(self) -> None:
        logger = setup_logging("deploy-orchestrator", json_output=False)
        try:
            assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)

"""Structured JSON logging with run_id / stage context support."""
from __future__ import annotations

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any

# Context variables bound by the orchestrator for the duration of a run / stage
run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "run_id", default=""
)
stage_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "stage", default=""
)


class JSONFormatter(logging.Formatter):
    """Custom JSON log formatter."""

    def __init__(self, service_name: str = "unknown") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "run_id": run_id_var.get(""),
            "stage": stage_var.get(""),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


def setup_logging(service_name: str, level: str = "INFO", json_output: bool = True) -> logging.Logger:
    """Configure logging for the pipeline process.

    Handlers are attached to the ``src`` package logger so that every
    module-level ``logging.getLogger(__name__)`` logger inherits them.

    Args:
        service_name: Name of the service for log entries.
        level: Log level string (e.g. "INFO", "DEBUG").
        json_output: Emit JSON lines; plain text otherwise.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger("src")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    logger.addHandler(handler)

    return logger

"""
Structured logging configuration.

- Development: human-readable colored format
- Production: JSON format (log aggregator compatible)
- Log level: LOG_LEVEL from app config / env

Workflow code passes plan context through ``extra``:

    logger.info("Plan %s moved", plan_id,
                extra={"plan_id": plan_id, "action": "ForwardToDirector"})

Inside a request the formatters also pick up the request id and the acting
user from ``flask.g``, so service code does not have to repeat them.  JSON
output groups the workflow fields under ``"audit"``:

    {"level": "INFO", "message": "...", "request_id": "3f2a...",
     "audit": {"plan_id": "...", "actor_id": "L1", "actor_role": "LeadAuditor",
               "action": "ForwardToDirector"}}
"""

import json
import logging
import os
import sys
import time
import uuid
from datetime import datetime, timezone

from flask import g, has_request_context, request

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "request_id")
AUDIT_FIELDS = ("plan_id", "actor_id", "actor_role", "action")


def _context_fields(record: logging.LogRecord) -> dict:
    """Request and workflow fields of a record; explicit ``extra`` wins over ``g``."""
    fields = {}
    if has_request_context():
        fields["request_id"] = g.get("request_id")
        actor = g.get("actor")
        if actor is not None:
            fields["actor_id"] = actor.user_id
            fields["actor_role"] = actor.role.value
    for key in REQUEST_FIELDS + AUDIT_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            fields[key] = val
    return {k: v for k, v in fields.items() if v is not None}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        fields = _context_fields(record)
        log_entry.update({k: v for k, v in fields.items() if k in REQUEST_FIELDS})
        audit = {k: v for k, v in fields.items() if k in AUDIT_FIELDS}
        if audit:
            log_entry["audit"] = audit
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        fields = _context_fields(record)
        tags = "".join(
            f" [{label} {fields[key]}]"
            for key, label in (("plan_id", "plan"), ("actor_id", "by"), ("action", "action"))
            if key in fields
        )
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{tags}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_prod else ReadableFormatter()

    root = logging.getLogger()
    # Remove existing handlers to prevent duplicates in tests
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(response):
        if request.path.startswith("/api/"):
            started = g.get("request_started")
            elapsed = round((time.perf_counter() - started) * 1000, 1) if started else None
            logging.getLogger("auditflow.request").info(
                "%s %s -> %s", request.method, request.path, response.status_code,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed,
                },
            )
        response.headers["X-Request-ID"] = g.get("request_id", "")
        return response

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")

"""
Structured Logging Configuration

Provides:
- JSON-formatted structured logging
- Request/Response correlation IDs
- Operation timing for sync, preview and import runs
"""
import os
import sys
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
from functools import wraps
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variables for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message", "request_id", "user_id"
}


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format suitable for log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
            "user_id": user_id_var.get(""),
        }

        log_data["location"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging HTTP requests with correlation IDs.
    """

    def __init__(self, app, logger: logging.Logger = None):
        super().__init__(app)
        self.logger = logger or logging.getLogger("backlog_sync.requests")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:12])
        request_id_var.set(request_id)

        user_id = getattr(request.state, "user_id", "")
        if user_id:
            user_id_var.set(user_id)

        start_time = time.time()

        self.logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "event_type": "request_start",
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.logger.error(
                f"Request failed: {request.method} {request.url.path} - {type(e).__name__}",
                extra={
                    "event_type": "request_error",
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        self.logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "event_type": "request_complete",
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response


def log_operation(
    operation_name: str,
    logger: logging.Logger = None
) -> Callable:
    """
    Decorator to log async function execution with timing.

    Usage:
        @log_operation("sync_preview")
        async def preview(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            op_logger = logger or logging.getLogger(f"backlog_sync.operations.{operation_name}")
            start_time = time.time()

            op_logger.info(
                f"Operation started: {operation_name}",
                extra={
                    "event_type": "operation_start",
                    "operation": operation_name,
                }
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                op_logger.error(
                    f"Operation failed: {operation_name} - {type(e).__name__}",
                    extra={
                        "event_type": "operation_error",
                        "operation": operation_name,
                        "duration_ms": round(duration_ms, 2),
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True
                )
                raise

            duration_ms = (time.time() - start_time) * 1000
            op_logger.info(
                f"Operation completed: {operation_name}",
                extra={
                    "event_type": "operation_complete",
                    "operation": operation_name,
                    "duration_ms": round(duration_ms, 2),
                }
            )
            return result

        return wrapper
    return decorator


def log_sync_run(
    kind: str,
    user_id: str,
    project_id: int,
    jira_project_key: str,
    summary: Dict[str, Any],
    logger: logging.Logger = None
):
    """Log the outcome of a sync execution or import."""
    run_logger = logger or logging.getLogger("backlog_sync.integrations.sync")

    failed = summary.get("failed", 0)
    succeeded = sum(summary.get(k, 0) for k in ("created", "updated", "soft_deleted", "imported"))

    level = logging.INFO if failed == 0 else (
        logging.WARNING if succeeded > 0 else logging.ERROR
    )

    run_logger.log(
        level,
        f"Jira {kind} for project {project_id} ({jira_project_key}): succeeded={succeeded}, failed={failed}",
        extra={
            "event_type": f"jira_{kind}",
            "user_id": user_id,
            "project_id": project_id,
            "jira_project_key": jira_project_key,
            "summary": summary,
        }
    )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
):
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting for structured logging
        log_file: Optional file path to write logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)

    if json_format and os.environ.get("LOG_FORMAT", "json") == "json":
        console_handler.setFormatter(StructuredJSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredJSONFormatter())
        root_logger.addHandler(file_handler)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root_logger

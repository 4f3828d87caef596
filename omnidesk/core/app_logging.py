"""Logging setup for the omnidesk service.

``configure_logging`` installs one stream handler on the ``omnidesk`` logger
tree, either human-readable or one JSON object per line. ``install_access_logging``
adds an HTTP middleware that writes one access line per request and echoes an
``X-Request-Id`` header for correlation.
"""

import json
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request

ACCESS_LOGGER_NAME = "omnidesk.access"
SKIP_ACCESS_PATHS = frozenset({"/api/v1/health", "/api/v1/health/db"})


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def configure_logging(level: str = "INFO", log_json: bool = False) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger("omnidesk")
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(_get_formatter(log_json))
    root.addHandler(handler)
    root.setLevel(log_level)
    root.propagate = False


def install_access_logging(app: FastAPI) -> None:
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id

        if request.url.path in SKIP_ACCESS_PATHS:
            response = await call_next(request)
            response.headers["X-Request-Id"] = request_id
            return response

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000

        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and request.client is not None:
            client_ip = request.client.host

        response.headers["X-Request-Id"] = request_id
        access_logger.info(
            json.dumps(
                {
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "latency_ms": round(latency_ms, 2),
                    "client_ip": client_ip,
                }
            )
        )
        return response

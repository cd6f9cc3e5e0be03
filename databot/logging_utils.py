import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response

from .metrics import inc_http_request, observe_latency_ms


REQUEST_ID_HEADER = "X-Request-ID"

logger = logging.getLogger("databot")
access_logger = logging.getLogger("databot.access")


def setup_logging(level: str = "INFO") -> None:
    """Attach one stdout handler to the ``databot`` logger (idempotent)."""
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _access_record(request: Request, status: int, started: float, level: str) -> dict:
    return {
        "ts": iso_now(),
        "level": level,
        "request_id": request.state.request_id,
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "latency_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """One JSON access line per request; handlers add fields via ``request.state.log_extra``."""
    started = time.perf_counter()
    # reuse the caller's id so a redelivered update can be traced
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.log_extra = {}

    try:
        response = await call_next(request)
    except Exception:
        access_logger.error(json.dumps(_access_record(request, 500, started, "error")))
        raise

    record = _access_record(request, response.status_code, started, "info")
    inc_http_request(record["path"], record["status"])
    observe_latency_ms(record["latency_ms"])

    extra = getattr(request.state, "log_extra", None)
    if isinstance(extra, dict):
        record.update(extra)

    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    access_logger.info(json.dumps(record))
    return response

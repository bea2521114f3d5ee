import logging
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from schoolmgmt.config import settings

REQUEST_ID_HEADER = "X-Request-ID"
# Documentation routes are not worth a log line per hit
QUIET_PATHS = ("/api/docs", "/api/openapi.json")

def setup_logging() -> logging.Logger:
    """Configure the root logger once, from LOG_LEVEL and LOG_FILE."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        os.makedirs(Path(settings.LOG_FILE).parent, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    for noisy in ("uvicorn", "sqlalchemy", "alembic", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger("schoolmgmt")
    logger.setLevel(log_level)

    return logger

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with a request id.

    A client-supplied ``X-Request-ID`` is kept so calls can be traced across
    services; otherwise a new one is generated. The id is echoed back in the
    response header and stored on ``request.state``. Server errors are
    logged at ERROR, client errors at WARNING.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = logging.getLogger("schoolmgmt.request")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        quiet = request.url.path.startswith(QUIET_PATHS)
        start_time = time.perf_counter()

        if not quiet:
            self.logger.info(
                f"Request started: {request.method} {request.url.path} "
                f"[client: {request.client.host if request.client else 'unknown'}] "
                f"[request_id: {request_id}]"
            )

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                f"Request failed: {request.method} {request.url.path} "
                f"[error: {str(e)}] [request_id: {request_id}]",
                exc_info=True
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        if not quiet or level > logging.INFO:
            self.logger.log(
                level,
                f"Request completed: {request.method} {request.url.path} "
                f"[status: {response.status_code}] [duration: {duration_ms:.1f}ms] "
                f"[request_id: {request_id}]"
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

def add_logging_middleware(app: FastAPI):
    app.add_middleware(RequestLoggingMiddleware)

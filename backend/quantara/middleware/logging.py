import hashlib
import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from quantara.config import settings

logger = logging.getLogger("quantara.http")

_REQUEST_ID_HEADER = "X-Request-ID"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _anonymize(host: str | None) -> str | None:
    if not host:
        return None
    return hashlib.sha256(host.encode()).hexdigest()[:12]


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Access log as one JSON object per request.

    The caller's X-Request-ID is reused when present, otherwise a short one
    is generated; either way it is returned on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(_REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        started = time.perf_counter()

        # Stays 500 when the endpoint raises; the app-level handler answers.
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            entry = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "user_id": getattr(request.state, "user_id", None),
                "client": _anonymize(request.client.host if request.client else None),
            }
            logger.log(_level_for(status_code), json.dumps(entry))

        response.headers[_REQUEST_ID_HEADER] = request_id
        return response


def setup_logging() -> None:
    """Root logging for the process; called once from the app lifespan."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for noisy in ("stripe", "apscheduler.executors.default"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from contextvars import ContextVar

import logging
import time
import uuid

REQUEST_ID_HEADER = "X-Request-ID"

# Assignment calls sit on page loads; anything slower is worth a warning
SLOW_REQUEST_MS = 500

request_id_context: ContextVar[str] = ContextVar("request_id", default="N/A")

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id for the log filter and times it."""

    @classmethod
    def request_id_context(cls):
        return request_id_context

    async def dispatch(self, request: Request, call_next):
        # Keep the caller's id so logs can be joined with the marketing site's
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        token = request_id_context.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            elapsed_ms = (time.perf_counter() - started) * 1000
            level = logging.WARNING if elapsed_ms > SLOW_REQUEST_MS else logging.DEBUG
            logger.log(level, "%s %s -> %d in %.1f ms",
                       request.method, request.url.path, response.status_code, elapsed_ms)

        except Exception:
            logger.exception("Unhandled error during %s %s.", request.method, request.url.path)
            raise

        finally:
            request_id_context.reset(token)

        return response

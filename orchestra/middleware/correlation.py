"""Request correlation IDs.

The id from ``X-Correlation-ID`` (or a fresh UUID) is stored on
``request.state``, echoed on the response and exposed to log records through
``CorrelationIdFilter``.
"""

import logging
from contextvars import ContextVar
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    """Adds ``correlation_id`` to every record so formats can reference it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


def get_correlation_id(request: Optional[Request] = None) -> str:
    """Correlation id of the request being served, from state or the context."""
    if request is not None:
        return getattr(request.state, "correlation_id", correlation_id_var.get())
    return correlation_id_var.get()

"""Initialise observability middleware and logging."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


class _TraceIdMiddleware(BaseHTTPMiddleware):
    """Attach a ``X-Trace-Id`` header to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get("x-trace-id", uuid.uuid4().hex)
        request.state.trace_id = trace_id
        response = await call_next(request)
        response.headers["X-Trace-Id"] = trace_id
        return response


def configure_logging(level: int | str = logging.INFO) -> None:
    """Give the ``zhort`` loggers a stderr handler unless the host app configured one."""
    root = logging.getLogger("zhort")
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)


def init_observability(app: FastAPI) -> None:
    """Wire up trace-id middleware."""
    app.add_middleware(_TraceIdMiddleware)

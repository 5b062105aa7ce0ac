"""Middleware for handling correlation IDs in FastAPI requests.

Written against the raw ASGI interface rather than ``BaseHTTPMiddleware``
so streamed responses and client disconnects pass straight through.
"""

import uuid
from typing import Optional

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from utils import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)


class CorrelationMiddleware:
    """Middleware to handle correlation IDs for requests."""

    def __init__(self, app: ASGIApp, correlation_header: str = "X-Correlation-ID") -> None:
        self.app = app
        self.correlation_header = correlation_header

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        correlation_id = headers.get(self.correlation_header) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        method = scope.get("method")
        path = scope.get("path")
        client = scope.get("client")
        logger.info(
            f"HTTP request received: {method} {path}",
            serviceName="CorrelationMiddleware",
            operationName="handleRequest",
            method=method,
            path=path,
            user_agent=headers.get("user-agent"),
            client_ip=client[0] if client else None,
        )

        status_code: Optional[int] = None

        async def send_with_correlation(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message)[self.correlation_header] = correlation_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation)
        finally:
            logger.info(
                f"HTTP request completed: {method} {path}",
                serviceName="CorrelationMiddleware",
                operationName="handleRequest",
                method=method,
                path=path,
                status_code=status_code,
                success=status_code is not None and 200 <= status_code < 400,
            )
            clear_correlation_id()

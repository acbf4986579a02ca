"""Request body size limit middleware.

Rejects oversized request bodies with HTTP 413 before they reach a route.
The limit is checked against Content-Length and again while the body
streams in, so chunked uploads cannot bypass it. Individual path prefixes
may carry their own larger limit (e.g. the PDF upload route).
"""

import json
from typing import Dict, Optional

from starlette.types import Receive, Scope, Send


class BodyTooLarge(Exception):
    """Raised when request body exceeds size limit."""


class SizeLimitedStream:
    """A receive wrapper that counts body bytes as they are read."""

    def __init__(self, receive: Receive, max_size: int):
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def receive(self) -> dict:
        """Receive and enforce size limit.

        Raises:
            BodyTooLarge: If body size exceeds max_size
        """
        message = await self._receive()
        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise BodyTooLarge(
                    f"Request body too large. Maximum allowed: {self._max_size} bytes"
                )
        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware to limit request body size.

    Raw ASGI so the receive callable is wrapped before Starlette's Request
    is constructed.

    Usage:
        app.add_middleware(
            RequestSizeLimitMiddleware,
            max_body_size=10 * 1024,
            path_limits={"/api/analyze-pdf": 15 * 1024 * 1024},
        )
    """

    def __init__(
        self,
        app,
        max_body_size: int = 10 * 1024,
        path_limits: Optional[Dict[str, int]] = None,
    ):
        """Initialize the middleware.

        Args:
            app: The ASGI application
            max_body_size: Default maximum body size in bytes
            path_limits: Per path-prefix overrides of ``max_body_size``
        """
        self.app = app
        self.max_body_size = max_body_size
        self.path_limits = path_limits or {}

    def limit_for(self, path: str) -> int:
        for prefix, limit in self.path_limits.items():
            if path.startswith(prefix):
                return limit
        return self.max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        max_size = self.limit_for(scope.get("path", ""))

        # Fast path: trust a declared Content-Length
        for name, value in scope.get("headers", []):
            if name.lower() == b"content-length":
                try:
                    declared = int(value.decode())
                except ValueError:
                    break
                if declared > max_size:
                    await self._send_413_response(send, max_size)
                    return
                break

        limited = SizeLimitedStream(receive, max_size)
        response_started = False

        async def send_wrapper(message: dict) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited.receive, send_wrapper)
        except BodyTooLarge:
            if response_started:
                raise
            await self._send_413_response(send, max_size)

    async def _send_413_response(self, send: Send, max_size: int) -> None:
        body = json.dumps({
            "success": False,
            "error": f"Request body too large. Maximum allowed: {max_size} bytes",
        }).encode()
        await send({
            "type": "http.response.start",
            "status": 413,
            "headers": [
                [b"content-type", b"application/json"],
                [b"content-length", str(len(body)).encode()],
            ],
        })
        await send({"type": "http.response.body", "body": body})

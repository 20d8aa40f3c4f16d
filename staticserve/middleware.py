"""
ASGI wrappers placed around the file handlers.

Each wrapper takes an ASGI app and is itself an ASGI app, so they compose
in any order: AccessLogMiddleware(CacheControlMiddleware(files), target).
"""

from __future__ import annotations

import logging
import os
import stat
import time
from typing import Callable, Optional

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .target import ServeTarget

CACHE_CONTROL = "no-store, max-age=0"

access_logger = logging.getLogger("staticserve.access")

# (method, request path, elapsed seconds)
AccessSink = Callable[[str, str, float], None]

SECOND = 1_000_000_000
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE


def _decimal(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_duration(seconds: float) -> str:
    """Format an elapsed time the way Go prints a time.Duration: 1.234567ms, 1m1.5s"""
    ns = round(seconds * SECOND)
    if ns <= 0:
        return "0s"
    if ns < 1_000:
        return f"{ns}ns"
    if ns < 1_000_000:
        return _decimal(ns, 1_000) + "µs"
    if ns < SECOND:
        return _decimal(ns, 1_000_000) + "ms"

    hours, rest = divmod(ns, HOUR)
    minutes, rest = divmod(rest, MINUTE)
    secs = _decimal(rest, SECOND) + "s"
    if hours:
        return f"{hours}h{minutes}m{secs}"
    if minutes:
        return f"{minutes}m{secs}"
    return secs


def log_access(method: str, path: str, elapsed: float) -> None:
    access_logger.info("[%s] served %s in %s", method, path, format_duration(elapsed))


class CacheControlMiddleware:
    """Force every response to be re-fetched instead of served from a cache."""

    def __init__(self, app: ASGIApp, value: str = CACHE_CONTROL) -> None:
        self.app = app
        self.value = value

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_cache_control(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["cache-control"] = self.value
            await send(message)

        await self.app(scope, receive, send_with_cache_control)


class AccessLogMiddleware:
    """Log completed requests that were answered from a regular file.

    After the inner app returns, the request path is mapped back onto the
    serve target and stat'ed. Directories (index responses) and paths that
    cannot be stat'ed are not logged.
    """

    def __init__(self, app: ASGIApp, target: ServeTarget, sink: Optional[AccessSink] = log_access) -> None:
        self.app = app
        self.target = target
        self.sink = sink

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.sink is None:
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        await self.app(scope, receive, send)
        elapsed = time.perf_counter() - start

        if self._served_regular_file(scope["path"]):
            self.sink(scope["method"], scope["path"], elapsed)

    def _served_regular_file(self, url_path: str) -> bool:
        path = self.target.served_path(url_path)
        if path is None:
            return False
        try:
            st = os.stat(path)
        except (OSError, ValueError):
            return False
        return not stat.S_ISDIR(st.st_mode)

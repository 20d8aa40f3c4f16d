"""
Listener ownership, the background serve task and the bounded shutdown.

uvicorn is the HTTP engine. Its own signal handling is switched off: the
ShutdownCoordinator decides when to stop and FileServer.shutdown() drives
the drain with a deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import sys
from typing import Optional

import uvicorn
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import ResolvedAddress, ServerSettings, format_address
from .errors import BindError, ShutdownError
from .middleware import CacheControlMiddleware
from .shutdown import FatalServeError, ShutdownCoordinator

logger = logging.getLogger(__name__)

# Extra time allowed for closing the listener once the drain deadline has passed
CLOSE_GRACE = 1.0


class WriteTimeoutMiddleware:
    """Abort a response that is still being produced after `timeout` seconds.

    The inner app is cancelled. A response that has not started yet is
    answered with 500; one already streaming has its connection dropped.
    """

    def __init__(self, app: ASGIApp, timeout: float) -> None:
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.timeout:
            await self.app(scope, receive, send)
            return
        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_tracking), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("[%s] %s exceeded the %ss write timeout", scope["method"], scope["path"], self.timeout)
            if not response_started:
                response = PlainTextResponse("Internal Server Error", status_code=500)
                await response(scope, receive, send)


class _UvicornServer(uvicorn.Server):
    forced_close = False

    @contextlib.contextmanager
    def capture_signals(self):
        # signals are handled by ShutdownCoordinator
        yield

    async def shutdown(self, sockets: Optional[list] = None) -> None:
        await super().shutdown(sockets=sockets)
        # Tasks uvicorn had to cancel at the deadline are still registered here
        self.forced_close = bool(self.server_state.tasks)


class FileServer:
    def __init__(self, app: ASGIApp, address: ResolvedAddress, settings: ServerSettings) -> None:
        self.app = app
        self.address = address
        self.settings = settings
        self.sock: Optional[socket.socket] = None
        self._bound: Optional[str] = None
        self._server: Optional[_UvicornServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def bound_address(self) -> str:
        return self._bound or str(self.address)

    def listen(self) -> None:
        """Bind and listen on the configured address, raising BindError on failure."""
        sock = socket.socket(self.address.family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if self.address.family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind(self.address.sockaddr)
            sock.listen(socket.SOMAXCONN)
        except OSError as e:
            sock.close()
            raise BindError(f"Cannot listen on {self.address}: {e}") from e
        self.sock = sock
        self._bound = format_address(sock.getsockname())

    def start(self) -> asyncio.Task:
        """Run the uvicorn serve loop on a background task."""
        if self.sock is None:
            self.listen()
        config = uvicorn.Config(
            CacheControlMiddleware(WriteTimeoutMiddleware(self.app, self.settings.write_timeout)),
            lifespan="off",
            access_log=False,
            log_config=None,
            log_level=self.settings.log_level,
            timeout_keep_alive=self.settings.idle_timeout,
            timeout_graceful_shutdown=self.settings.shutdown_timeout,
            server_header=False,
        )
        self._server = _UvicornServer(config)
        self._task = asyncio.ensure_future(self._server.serve(sockets=[self.sock]))
        return self._task

    async def shutdown(self) -> None:
        """Stop accepting, drain in-flight requests, then force-close what is left.

        Raises ShutdownError when the drain deadline was exceeded or the
        serve loop failed while closing.
        """
        task = self._task
        if task is None or task.done():
            self._close_socket()
            return

        self._server.should_exit = True
        try:
            await asyncio.wait_for(task, self.settings.shutdown_timeout + CLOSE_GRACE)
        except asyncio.TimeoutError as e:
            raise ShutdownError("shutdown: close deadline exceeded") from e
        except Exception as e:
            raise ShutdownError(f"shutdown: {e}") from e
        finally:
            self._close_socket()

        if self._server.forced_close:
            raise ShutdownError(
                f"shutdown: graceful shutdown deadline of {self.settings.shutdown_timeout}s exceeded, "
                "in-flight requests were cancelled"
            )

    def _close_socket(self) -> None:
        if self.sock is not None:
            self.sock.close()

    async def run(self) -> int:
        """Serve until a shutdown trigger fires and return the process exit status."""
        loop = asyncio.get_running_loop()
        coordinator = ShutdownCoordinator()
        coordinator.install(loop)
        try:
            serve_task = self.start()
            print(f"File server accept now connection on {self.bound_address} 🚀\n", flush=True)

            trigger = await coordinator.wait(serve_task)
            status = 0
            if isinstance(trigger, FatalServeError):
                print(trigger.error, file=sys.stderr)
                status = 1

            try:
                await self.shutdown()
            except ShutdownError as e:
                print(e, file=sys.stderr)
                return 1
        finally:
            coordinator.uninstall(loop)

        print("File server stopped", flush=True)
        return status

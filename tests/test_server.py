import asyncio
import os
import signal
import socket
import sys

import pytest
import requests

from staticserve.config import ServerSettings
from staticserve.errors import BindError, ShutdownError
from staticserve.routes import build_app
from staticserve.server import FileServer
from staticserve.target import ServeTarget


def make_server(app, port="0", **overrides):
    settings = ServerSettings(host="127.0.0.1", port=port, **overrides)
    server = FileServer(app, settings.bind_address().resolve(), settings)
    server.listen()
    return server


async def noop_app(scope, receive, send):
    pass


def fetch(url, **kwargs):
    try:
        return requests.get(url, timeout=10, **kwargs)
    except requests.RequestException as e:
        return e


class SlowApp:
    """Sends half a body, then waits `delay` seconds before finishing."""

    def __init__(self, delay):
        self.delay = delay
        self.started = None

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return
        self.started.set()
        await send({"type": "http.response.start", "status": 200, "headers": [(b"content-length", b"10")]})
        await send({"type": "http.response.body", "body": b"12345", "more_body": True})
        await asyncio.sleep(self.delay)
        await send({"type": "http.response.body", "body": b"67890"})


def test_serves_directory_and_shuts_down(site, sink, records):
    server = make_server(build_app(ServeTarget.resolve(str(site)), sink))
    url = f"http://{server.bound_address}/a.txt"

    async def scenario():
        task = server.start()
        response = await asyncio.to_thread(fetch, url)
        await server.shutdown()
        return task, response

    task, response = asyncio.run(scenario())
    assert response.status_code == 200
    assert response.text == "hello"
    assert response.headers["cache-control"] == "no-store, max-age=0"
    assert [r[:2] for r in records] == [("GET", "/a.txt")]
    assert task.done() and not task.cancelled()
    assert server.sock.fileno() == -1


def test_shutdown_waits_for_in_flight_request():
    app = SlowApp(delay=0.3)
    server = make_server(app, shutdown_timeout=3)
    url = f"http://{server.bound_address}/"

    async def scenario():
        app.started = asyncio.Event()
        server.start()
        pending = asyncio.ensure_future(asyncio.to_thread(fetch, url))
        await app.started.wait()
        await server.shutdown()
        return await pending

    response = asyncio.run(scenario())
    assert response.status_code == 200
    assert response.content == b"1234567890"


def test_shutdown_deadline_exceeded():
    app = SlowApp(delay=30)
    server = make_server(app, shutdown_timeout=0.5, write_timeout=0)
    url = f"http://{server.bound_address}/"

    async def scenario():
        app.started = asyncio.Event()
        server.start()
        pending = asyncio.ensure_future(asyncio.to_thread(fetch, url))
        await app.started.wait()
        with pytest.raises(ShutdownError):
            await server.shutdown()
        return await pending

    response = asyncio.run(scenario())
    # the connection was dropped mid-body
    assert isinstance(response, requests.RequestException)


def test_write_timeout_aborts_slow_handler():
    async def stalled(scope, receive, send):
        await asyncio.sleep(5)

    server = make_server(stalled, write_timeout=0.2)
    url = f"http://{server.bound_address}/"

    async def scenario():
        server.start()
        response = await asyncio.to_thread(fetch, url)
        await server.shutdown()
        return response

    response = asyncio.run(scenario())
    assert response.status_code == 500
    assert response.headers["cache-control"] == "no-store, max-age=0"
    assert response.elapsed.total_seconds() < 5


def test_listen_on_busy_port_fails():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen()
        port = busy.getsockname()[1]
        with pytest.raises(BindError) as excinfo:
            make_server(noop_app, port=str(port))
    assert f"127.0.0.1:{port}" in str(excinfo.value)


def test_run_reports_fatal_serve_error(capsys):
    server = make_server(noop_app)
    # a closed listener makes the serve loop fail on startup
    server.sock.close()

    status = asyncio.run(server.run())
    captured = capsys.readouterr()
    assert status == 1
    assert captured.err.strip()
    assert "File server stopped" in captured.out


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_run_stops_on_interrupt(site, capsys):
    server = make_server(build_app(ServeTarget.resolve(str(site)), sink=None))
    address = server.bound_address

    async def scenario():
        asyncio.get_running_loop().call_later(0.3, os.kill, os.getpid(), signal.SIGINT)
        return await server.run()

    status = asyncio.run(scenario())
    captured = capsys.readouterr()
    assert status == 0
    assert f"File server accept now connection on {address}" in captured.out
    assert captured.out.rstrip().endswith("File server stopped")

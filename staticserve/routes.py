from __future__ import annotations

import html
import os
import stat
from typing import Optional
from urllib.parse import quote

import anyio.to_thread
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import URL
from starlette.responses import Response
from starlette.types import ASGIApp, Scope

from .middleware import AccessLogMiddleware, AccessSink, CacheControlMiddleware, log_access
from .target import ServeTarget


def render_listing(directory: str) -> HTMLResponse:
    """Plain <pre> list of links to the entries of `directory`, sorted by name."""
    entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', "<pre>"]
    for entry in entries:
        name = entry.name + "/" if entry.is_dir() else entry.name
        lines.append(f'<a href="{quote(name)}">{html.escape(name)}</a>')
    lines.append("</pre>")
    return HTMLResponse("\n".join(lines) + "\n")


class DirectoryFiles(StaticFiles):
    """StaticFiles that lists directories which have no index.html."""

    async def get_response(self, path: str, scope: Scope) -> Response:
        if scope["method"] in ("GET", "HEAD"):
            try:
                full_path, stat_result = await anyio.to_thread.run_sync(self.lookup_path, path)
                if stat_result is not None and stat.S_ISDIR(stat_result.st_mode):
                    index = os.path.join(path, "index.html")
                    _, index_stat = await anyio.to_thread.run_sync(self.lookup_path, index)
                    if index_stat is None or not stat.S_ISREG(index_stat.st_mode):
                        if not scope["path"].endswith("/"):
                            url = URL(scope=scope)
                            return RedirectResponse(url=url.replace(path=url.path + "/"))
                        return await anyio.to_thread.run_sync(render_listing, full_path)
            except OSError:
                # permission and name-length errors are mapped by StaticFiles
                pass
        return await super().get_response(path, scope)


class SingleFile(StaticFiles):
    """StaticFiles pinned to one file, whatever path the request carries."""

    def __init__(self, path: str) -> None:
        directory, self.filename = os.path.split(path)
        super().__init__(directory=directory, follow_symlink=True)

    def get_path(self, scope: Scope) -> str:
        return self.filename


def build_app(target: ServeTarget, sink: Optional[AccessSink] = log_access) -> ASGIApp:
    """Create the application serving `target`.

    A directory is mounted at the root with index.html resolution and a
    listing for directories without one. A single file answers on /<name>
    and on any path below it.
    """
    app = FastAPI(title="staticserve", docs_url=None, redoc_url=None, openapi_url=None)

    if target.is_directory:
        files = DirectoryFiles(directory=target.path, html=True, follow_symlink=True)
        app.mount("/", AccessLogMiddleware(CacheControlMiddleware(files), target, sink), name="files")
    else:
        handler = AccessLogMiddleware(CacheControlMiddleware(SingleFile(target.path)), target, sink)
        app.add_route(f"/{target.name}", handler, name="file")
        app.add_route(f"/{target.name}/{{subpath:path}}", handler, name="file-subpath")

    # Router 404/405 and error-middleware 500 responses never reach the file handlers
    return CacheControlMiddleware(app)

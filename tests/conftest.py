import pytest
from fastapi.testclient import TestClient

from staticserve.routes import build_app
from staticserve.target import ServeTarget

INDEX_HTML = b"<!DOCTYPE html><html><body>index</body></html>"


@pytest.fixture
def site(tmp_path):
    """A small tree: a.txt, an index page and a nested directory."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "a.txt").write_bytes(b"hello")
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "sub").mkdir()
    (root / "sub" / "b.txt").write_bytes(b"nested file")
    (root / "empty").mkdir()
    return root


@pytest.fixture
def records():
    return []


@pytest.fixture
def sink(records):
    def collect(method, path, elapsed):
        records.append((method, path, elapsed))

    return collect


@pytest.fixture
def dir_client(site, sink):
    return TestClient(build_app(ServeTarget.resolve(str(site)), sink=sink))


@pytest.fixture
def file_client(site, sink):
    return TestClient(build_app(ServeTarget.resolve(str(site / "a.txt")), sink=sink))


@pytest.fixture
def index_html():
    return INDEX_HTML

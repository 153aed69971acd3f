import io
import json
import zipfile

import platformdirs
import pytest
import requests

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the markers used to group the test suite.

    Parameters:
        config: pytest.Config
            The pytest configuration object used to register the markers.
    """
    config.addinivalue_line("markers", "unit: fast, isolated tests")
    config.addinivalue_line(
        "markers", "integration: tests that wire several components together"
    )


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point platformdirs and the environment at a throwaway directory layout.

    Creates temp cache and config directories, patches the platformdirs user_*
    functions to return them, and clears GITHUB_TOKEN and ADDMAN_LOG_LEVEL so
    the developer's environment never leaks into a test.
    """
    base = tmp_path_factory.mktemp("addman")
    cache_dir = base / "cache"
    config_dir = base / "config"
    for path in (cache_dir, config_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("ADDMAN_LOG_LEVEL", raising=False)

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )


@pytest.fixture(autouse=True)
def _block_real_network(monkeypatch):
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    monkeypatch.setattr(requests, "get", _block_network)
    monkeypatch.setattr(requests, "post", _block_network)
    monkeypatch.setattr(requests, "head", _block_network)
    monkeypatch.setattr(requests.Session, "request", _block_network)


# =============================================================================
# Shared builders
# =============================================================================


def make_zip(entries):
    """
    Build an in-memory zip archive.

    Parameters:
        entries: Iterable of member names; names ending in "/" become directory
            entries, everything else a file whose content is its own name.

    Returns:
        bytes: The archive.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name in entries:
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), "")
            else:
                zf.writestr(name, name)
    return buffer.getvalue()


class FakeResponse:
    """Minimal streamed `requests.Response` stand-in."""

    def __init__(self, body: bytes = b"", status_code: int = 200, reason: str = "OK"):
        self.body = body
        self.status_code = status_code
        self.reason = reason

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """
    Serve canned payloads by URL and record every request.

    Values may be bytes, JSON-serializable objects, or a FakeResponse.
    Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, timeout=None, stream=False):
        self.calls.append(url)
        payload = self.routes.get(url)
        if payload is None:
            return FakeResponse(b"", status_code=404, reason="Not Found")
        if isinstance(payload, FakeResponse):
            return payload
        if isinstance(payload, Exception):
            raise payload
        if not isinstance(payload, bytes):
            payload = json.dumps(payload).encode("utf-8")
        return FakeResponse(payload)


@pytest.fixture
def fake_session():
    return FakeSession()


def release_doc(tag, assets):
    """Build a `releases/latest` document from (name, content_type, updated_at) tuples."""
    return {
        "tag_name": tag,
        "assets": [
            {
                "name": name,
                "browser_download_url": f"https://example.invalid/{tag}/{name}",
                "size": 10,
                "content_type": content_type,
                "updated_at": updated_at,
            }
            for name, content_type, updated_at in assets
        ],
    }


@pytest.fixture
def build_zip():
    """Return the in-memory zip builder."""
    return make_zip


@pytest.fixture
def build_release():
    """Return the `releases/latest` document builder."""
    return release_doc


@pytest.fixture
def session_factory():
    """Return a FakeSession constructor for tests that need routes up front."""
    return FakeSession

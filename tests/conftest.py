"""
Shared fixtures for the Restyle test suite.

RESTYLE_HOME is pointed at a throwaway directory before any restyle module
is imported, because restyle.config creates its directories on import.
"""

import os
import sys
import tempfile
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

_TEST_HOME = Path(tempfile.mkdtemp(prefix="restyle-test-"))
os.environ['RESTYLE_HOME'] = str(_TEST_HOME)
os.environ['RESTYLE_BINARIES'] = str(_TEST_HOME / "bundled-binaries")

import pytest  # noqa: E402


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, json_data=None, text=None, content=b'', lines=None,
                 headers=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content if text is None else text.encode('utf-8')
        self.text = text if text is not None else content.decode('utf-8', errors='replace')
        self._lines = lines or []
        self.headers = headers or {}
        self.closed = False

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def iter_lines(self):
        yield from self._lines

    def close(self):
        self.closed = True


class FakeSession:
    """
    Routes GET/POST by exact URL to FakeResponse objects.

    A route value may be a FakeResponse or a callable returning one.
    Unknown URLs answer 404. Every call is recorded in .calls.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(status_code=404)
        return route() if callable(route) else route

    def get(self, url, **kwargs):
        return self._respond('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond('POST', url, **kwargs)

    def close(self):
        pass

    def urls(self, method='GET'):
        return [url for m, url, _ in self.calls if m == method]


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def store(tmp_path):
    from restyle.library import ModelStore
    return ModelStore(tmp_path / "models")

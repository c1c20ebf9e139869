"""
Tests for the model repository client.

Tests cover:
- Resolving repos into catalog entries (type inference, size, revision)
- TTL cache hits, expiry and invalidation
- Catalog listing and filtering
- Error mapping for network failures and non-2xx responses
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from restyle.catalog import CatalogEntry, RepositoryClient, normalize_model_type, validate_repo
from restyle.errors import InvalidRepo, RepositoryFetchFailed

ENDPOINT = "https://hub.test"
API = "https://hub.test/api/models"


def file_url(repo, filename):
    return f"{ENDPOINT}/{repo}/resolve/main/{filename}"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def style_routes(fake_response):
    repo = "Rewritelikeme/noir"
    return {
        f"{API}/{repo}": fake_response(json_data={
            'sha': 'abc123',
            'siblings': [
                {'rfilename': 'info.json', 'size': 80},
                {'rfilename': 'adapter.gguf', 'size': 5_000_000},
                {'rfilename': 'system_prompt.txt', 'size': 40},
            ],
        }),
        file_url(repo, 'info.json'): fake_response(text=json.dumps({
            'type': 'voice', 'baseModelRepo': 'Rewritelikeme/base-7b', 'contextWindow': 4096,
        })),
    }


class TestHelpers:
    """Type normalization and repo validation."""

    def test_voice_is_an_alias_for_style(self):
        """'voice' normalizes to 'style'."""
        assert normalize_model_type("voice") == "style"
        assert normalize_model_type("Style") == "style"
        assert normalize_model_type("base") == "base"
        assert normalize_model_type("lora") is None
        assert normalize_model_type(None) is None

    @pytest.mark.parametrize("repo", ["", None, "no-slash", 42])
    def test_invalid_repos(self, repo):
        """Malformed repo ids are rejected."""
        with pytest.raises(InvalidRepo):
            validate_repo(repo)


class TestResolveRepo:
    """Resolving a single repository."""

    def test_resolves_style_entry(self, fake_session, style_routes):
        """A style entry combines the API listing and info.json."""
        client = RepositoryClient(session=fake_session(style_routes), endpoint=ENDPOINT, api_base=API)
        entry = client.resolve_repo("Rewritelikeme/noir")
        assert entry == CatalogEntry(
            repo="Rewritelikeme/noir",
            type="style",
            latest_revision="abc123",
            size_bytes=5_000_000,
            context_window=4096,
            base_repo="Rewritelikeme/base-7b",
        )

    def test_type_inferred_from_siblings_without_info(self, fake_session, fake_response):
        """Without info.json the weight file decides the type."""
        repo = "Rewritelikeme/base-7b"
        session = fake_session({
            f"{API}/{repo}": fake_response(json_data={
                'sha': 'def',
                'siblings': [{'rfilename': 'model.gguf', 'size': 4_000_000_000}],
            }),
        })
        entry = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API).resolve_repo(repo)
        assert entry.type == "base"
        assert entry.size_bytes == 4_000_000_000
        assert entry.base_repo is None

    def test_unknown_type_becomes_minimal_base_entry(self, fake_session, fake_response):
        """An untyped repo resolves as a minimal base."""
        repo = "Rewritelikeme/mystery"
        session = fake_session({f"{API}/{repo}": fake_response(json_data={'siblings': []})})
        entry = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API).resolve_repo(repo)
        assert entry == CatalogEntry(repo=repo, type="base")

    def test_metadata_failure_raises(self, fake_session):
        """A failed metadata request raises."""
        client = RepositoryClient(session=fake_session(), endpoint=ENDPOINT, api_base=API)
        with pytest.raises(RepositoryFetchFailed) as exc_info:
            client.resolve_repo("Rewritelikeme/missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "REPOSITORY_FETCH_FAILED"

    def test_network_error_raises(self):
        """A connection error raises."""
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("offline")
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        with pytest.raises(RepositoryFetchFailed) as exc_info:
            client.resolve_repo("Rewritelikeme/noir")
        assert exc_info.value.status_code is None
        assert "offline" in str(exc_info.value)

    def test_invalid_repo_makes_no_request(self, fake_session):
        """A bad repo id is rejected before any request."""
        session = fake_session()
        with pytest.raises(InvalidRepo):
            RepositoryClient(session=session).resolve_repo("not-a-repo")
        assert session.calls == []


class TestCache:
    """TTL cache behaviour."""

    def test_second_resolve_is_cached(self, fake_session, style_routes):
        """A second resolve inside the TTL uses the cache."""
        session = fake_session(style_routes)
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        client.resolve_repo("Rewritelikeme/noir")
        calls = len(session.calls)
        client.resolve_repo("Rewritelikeme/noir")
        assert len(session.calls) == calls

    def test_entries_expire_after_ttl(self, fake_session, style_routes):
        """Entries are refetched once the TTL passes."""
        session = fake_session(style_routes)
        clock = FakeClock()
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API,
                                  cache_ttl_seconds=600, clock=clock)
        client.resolve_repo("Rewritelikeme/noir")
        calls = len(session.calls)
        clock.now += 601
        client.resolve_repo("Rewritelikeme/noir")
        assert len(session.calls) == calls * 2

    def test_invalidate_forces_refetch(self, fake_session, style_routes):
        """invalidate drops a cached entry."""
        session = fake_session(style_routes)
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        client.resolve_repo("Rewritelikeme/noir")
        calls = len(session.calls)
        client.invalidate("Rewritelikeme/noir")
        client.resolve_repo("Rewritelikeme/noir")
        assert len(session.calls) > calls


class TestListCatalog:
    """Organization listing."""

    def _routes(self, fake_response, style_routes, limit=20):
        routes = dict(style_routes)
        routes[f"{API}?author=Rewritelikeme&limit={limit}&sort=lastModified&direction=-1"] = fake_response(
            json_data=[
                {'modelId': 'Rewritelikeme/noir'},
                {'modelId': 'Rewritelikeme/broken'},
                {'id': 'Rewritelikeme/base-7b'},
                {'modelId': 'no-slash'},
            ])
        routes[f"{API}/Rewritelikeme/base-7b"] = fake_response(json_data={
            'sha': 'b1', 'siblings': [{'rfilename': 'model.gguf', 'size': 123}],
        })
        return routes

    def test_lists_and_skips_failures(self, fake_session, fake_response, style_routes):
        """Repos that fail to resolve are left out."""
        session = fake_session(self._routes(fake_response, style_routes))
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        entries = client.list_catalog()
        assert [e.repo for e in entries] == ["Rewritelikeme/noir", "Rewritelikeme/base-7b"]

    def test_filters_by_type(self, fake_session, fake_response, style_routes):
        """Listing can be limited to one type."""
        session = fake_session(self._routes(fake_response, style_routes))
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        assert [e.repo for e in client.list_catalog("style")] == ["Rewritelikeme/noir"]
        assert [e.repo for e in client.list_catalog("voice")] == ["Rewritelikeme/noir"]
        assert [e.repo for e in client.list_catalog("base")] == ["Rewritelikeme/base-7b"]

    def test_page_size_is_clamped(self, fake_session, fake_response, style_routes):
        """Page size is capped."""
        session = fake_session(self._routes(fake_response, style_routes, limit=50))
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        assert len(client.list_catalog(page_size=500)) == 2


class TestFileStreams:
    """Opening download streams."""

    def test_file_url_layout(self):
        """File URLs use the resolve/main layout."""
        client = RepositoryClient(session=MagicMock(), endpoint=ENDPOINT, api_base=API)
        assert client.file_url("Rewritelikeme/noir", "adapter.gguf") == file_url("Rewritelikeme/noir", "adapter.gguf")

    def test_open_file_stream_requests_streaming(self, fake_session, fake_response):
        """File streams are opened with stream=True."""
        url = file_url("Rewritelikeme/noir", "adapter.gguf")
        session = fake_session({url: fake_response(content=b"weights")})
        client = RepositoryClient(session=session, endpoint=ENDPOINT, api_base=API)
        response = client.open_file_stream("Rewritelikeme/noir", "adapter.gguf")
        assert b''.join(response.iter_content(3)) == b"weights"
        assert session.calls[0][2]['stream'] is True

    def test_open_file_stream_non_2xx_closes_and_raises(self, fake_session, fake_response):
        """A non-2xx file response is closed and raises."""
        url = file_url("Rewritelikeme/noir", "adapter.gguf")
        failing = fake_response(status_code=503)
        client = RepositoryClient(session=fake_session({url: failing}), endpoint=ENDPOINT, api_base=API)
        with pytest.raises(RepositoryFetchFailed):
            client.open_file_stream("Rewritelikeme/noir", "adapter.gguf")
        assert failing.closed

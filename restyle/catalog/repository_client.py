"""
Repository Client for the remote model repository.

Talks to a Hugging Face compatible service over plain HTTP (requests):
- model metadata:   GET {api_base}/{repo}          -> {siblings, sha, ...}
- model listing:    GET {api_base}?author={org}     -> [{modelId, ...}]
- file downloads:   GET {endpoint}/{repo}/resolve/main/{filename}

The only state kept is a short-TTL read cache of resolved catalog entries.
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests
from huggingface_hub import hf_hub_url

from restyle.config import (
    ADAPTER_WEIGHTS_FILE,
    BASE_WEIGHTS_FILE,
    CATALOG_CACHE_TTL_SECONDS,
    CATALOG_PAGE_SIZE_DEFAULT,
    CATALOG_PAGE_SIZE_MAX,
    HF_API_BASE,
    HF_ENDPOINT,
    HF_ORG,
    INFO_FILE,
    REPOSITORY_TIMEOUT_SECONDS,
)
from restyle.errors import InvalidRepo, RepositoryFetchFailed
from restyle.logging_config import debug_log

MODEL_TYPE_BASE = "base"
MODEL_TYPE_STYLE = "style"
MODEL_TYPES = (MODEL_TYPE_BASE, MODEL_TYPE_STYLE)

# info.json files published before the rename still say "voice"
_TYPE_ALIASES = {"voice": MODEL_TYPE_STYLE}


def normalize_model_type(value) -> str | None:
    """Map a raw type value to 'base' / 'style', or None if unrecognized."""
    if not isinstance(value, str):
        return None
    value = _TYPE_ALIASES.get(value.lower(), value.lower())
    return value if value in MODEL_TYPES else None


def validate_repo(repo) -> str:
    """Return repo unchanged if it looks like org/name, else raise InvalidRepo."""
    if not repo or not isinstance(repo, str) or '/' not in repo:
        raise InvalidRepo(repo)
    return repo


def primary_file_for(model_type: str) -> str:
    """The weight file whose presence marks a model of this type as installed."""
    return ADAPTER_WEIGHTS_FILE if model_type == MODEL_TYPE_STYLE else BASE_WEIGHTS_FILE


@dataclass(frozen=True)
class CatalogEntry:
    """Snapshot of one repository's metadata, as resolved at fetch time."""
    repo: str
    type: str
    latest_revision: str | None = None
    size_bytes: int | None = None
    context_window: int | None = None
    base_repo: str | None = None

    def to_dict(self) -> dict:
        data = {
            'repo': self.repo,
            'type': self.type,
            'latestRevision': self.latest_revision,
            'sizeBytes': self.size_bytes,
            'contextWindow': self.context_window,
        }
        if self.type == MODEL_TYPE_STYLE:
            data['baseModelRepo'] = self.base_repo
        return data


class _TTLCache:
    """Thread-safe key/value cache whose entries expire after ttl seconds."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key, value, ttl_seconds: float = None):
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()


class RepositoryClient:
    """
    HTTP client for the model repository with a TTL read cache.

    Args:
        session: requests.Session (or compatible) used for all calls.
                 Injected in tests.
        endpoint: Base URL for file downloads.
        api_base: Base URL for the models API.
        org: Organization whose models make up the catalog listing.
        cache_ttl_seconds: Lifetime of cached catalog entries.
        clock: Monotonic clock, injectable for cache expiry tests.
    """

    def __init__(
        self,
        session: requests.Session = None,
        endpoint: str = HF_ENDPOINT,
        api_base: str = HF_API_BASE,
        org: str = HF_ORG,
        cache_ttl_seconds: float = CATALOG_CACHE_TTL_SECONDS,
        timeout: float = REPOSITORY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session or requests.Session()
        self.endpoint = endpoint.rstrip('/')
        self.api_base = api_base.rstrip('/')
        self.org = org
        self.timeout = timeout
        self._cache = _TTLCache(cache_ttl_seconds, clock=clock)

    # ------------------------------------------------------------------
    # Raw fetches
    # ------------------------------------------------------------------

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise RepositoryFetchFailed(url, reason=str(e)) from e
        if not 200 <= response.status_code < 300:
            response.close()
            raise RepositoryFetchFailed(url, status_code=response.status_code)
        return response

    def fetch_json(self, url: str):
        """GET url and decode the JSON body."""
        response = self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise RepositoryFetchFailed(url, reason=f"invalid JSON: {e}") from e

    def fetch_text(self, url: str) -> str:
        """GET url and return the body as text."""
        return self._get(url).text

    def file_url(self, repo: str, filename: str) -> str:
        """Download URL of one file on the repo's main revision."""
        return hf_hub_url(repo, filename, endpoint=self.endpoint)

    def open_file_stream(self, repo: str, filename: str) -> requests.Response:
        """
        Open a streaming GET for one repository file.

        The caller owns the returned response and must close it.

        Raises:
            RepositoryFetchFailed: On network errors or non-2xx status.
        """
        return self._get(self.file_url(repo, filename), stream=True)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def resolve_repo(self, repo: str) -> CatalogEntry:
        """
        Resolve one repository into a CatalogEntry.

        Combines the models API sibling listing with the repo's optional
        info.json. The type comes from info.json when present, otherwise it
        is inferred from which weight file the repo lists.

        Raises:
            InvalidRepo: If repo is not org/name.
            RepositoryFetchFailed: If the metadata request fails.
        """
        validate_repo(repo)
        cache_key = f"repo:{repo}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        model_info = self.fetch_json(f"{self.api_base}/{repo}")
        if not isinstance(model_info, dict):
            model_info = {}
        siblings = model_info.get('siblings')
        if not isinstance(siblings, list):
            siblings = []
        filenames = {s.get('rfilename') for s in siblings if isinstance(s, dict)}

        info = None
        try:
            info = json.loads(self.fetch_text(self.file_url(repo, INFO_FILE)))
        except (RepositoryFetchFailed, ValueError) as e:
            debug_log(f"[CATALOG] {repo}: no usable {INFO_FILE} ({e})")
        if not isinstance(info, dict):
            info = {}

        model_type = normalize_model_type(info.get('type'))
        if model_type is None:
            if ADAPTER_WEIGHTS_FILE in filenames:
                model_type = MODEL_TYPE_STYLE
            elif BASE_WEIGHTS_FILE in filenames:
                model_type = MODEL_TYPE_BASE

        revision = None
        for key in ('sha', 'sha256', 'lastModified', '_id'):
            if model_info.get(key):
                revision = str(model_info[key])
                break

        if model_type is None:
            debug_log(f"[CATALOG] {repo}: could not determine model type; treating as minimal base entry")
            entry = CatalogEntry(repo=repo, type=MODEL_TYPE_BASE, latest_revision=revision)
            self._cache.set(cache_key, entry)
            return entry

        primary = primary_file_for(model_type)
        size_bytes = None
        for sibling in siblings:
            if isinstance(sibling, dict) and sibling.get('rfilename') == primary:
                if isinstance(sibling.get('size'), int):
                    size_bytes = sibling['size']
                break

        context_window = info.get('contextWindow')
        base_repo = info.get('baseModelRepo') if model_type == MODEL_TYPE_STYLE else None
        entry = CatalogEntry(
            repo=repo,
            type=model_type,
            latest_revision=revision,
            size_bytes=size_bytes,
            context_window=context_window if isinstance(context_window, int) else None,
            base_repo=base_repo if isinstance(base_repo, str) else None,
        )
        self._cache.set(cache_key, entry)
        debug_log(f"[CATALOG] Resolved {repo}: type={entry.type}, size={entry.size_bytes}, rev={entry.latest_revision}")
        return entry

    def list_catalog(self, model_type: str = None, page_size: int = CATALOG_PAGE_SIZE_DEFAULT) -> list[CatalogEntry]:
        """
        List the organization's models, most recently modified first.

        Repositories that fail to resolve are skipped.

        Args:
            model_type: Optional 'base' or 'style' filter.
            page_size: Number of repositories to list (clamped to 1..50).
        """
        try:
            limit = int(page_size)
        except (TypeError, ValueError):
            limit = CATALOG_PAGE_SIZE_DEFAULT
        limit = min(max(limit, 1), CATALOG_PAGE_SIZE_MAX)
        cache_key = f"org-list:{self.org}:{limit}"

        entries = self._cache.get(cache_key)
        if entries is None:
            models = self.fetch_json(
                f"{self.api_base}?author={self.org}&limit={limit}&sort=lastModified&direction=-1"
            )
            entries = []
            for model in models if isinstance(models, list) else []:
                if not isinstance(model, dict):
                    continue
                repo = str(model.get('modelId') or model.get('id') or model.get('name') or '')
                if '/' not in repo:
                    continue
                try:
                    entries.append(self.resolve_repo(repo))
                except RepositoryFetchFailed as e:
                    debug_log(f"[CATALOG] Skipping {repo}: {e}")
            self._cache.set(cache_key, entries)

        wanted = normalize_model_type(model_type) if model_type else None
        if wanted:
            return [e for e in entries if e.type == wanted]
        return list(entries)

    def invalidate(self, repo: str):
        """Drop the cached entry for repo so the next resolve refetches it."""
        self._cache.delete(f"repo:{repo}")

    def close(self):
        self.session.close()

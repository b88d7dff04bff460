import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

# Ensure root path is available for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from archive_streams.config import ResolverSettings  # noqa: E402
from archive_streams.errors import TransientFetchError  # noqa: E402
from archive_streams.services.media_data import (  # noqa: E402
    AlternateTitles,
    Candidate,
    EpisodeInfo,
    ItemMetadata,
    TitleMetadata,
)

QueryRule = tuple[Callable[[str, str | None, tuple[str, ...]], bool], list[Candidate]]


class FakeSearchGateway:
    """Returns the candidates of every rule whose predicate accepts the call."""

    def __init__(
        self,
        rules: Sequence[QueryRule] = (),
        failing: Callable[[str], bool] | None = None,
    ) -> None:
        self.rules = list(rules)
        self.failing = failing
        self.calls: list[tuple[str, str | None, tuple[str, ...], int]] = []

    async def search(self, query, media_type="movies", collections=(), rows=60):
        self.calls.append((query, media_type, tuple(collections), rows))
        if self.failing and self.failing(query):
            raise TransientFetchError("archive-search", f"boom for {query}")
        results: list[Candidate] = []
        for predicate, candidates in self.rules:
            if predicate(query, media_type, tuple(collections)):
                results.extend(candidates)
        return results


class FakeMetadataFetcher:
    def __init__(
        self,
        items: dict[str, ItemMetadata] | None = None,
        failing: Sequence[str] = (),
    ) -> None:
        self.items = items or {}
        self.failing = set(failing)
        self.calls: list[str] = []

    async def fetch_metadata(self, identifier):
        self.calls.append(identifier)
        if identifier in self.failing:
            raise TransientFetchError("archive-metadata", f"boom for {identifier}")
        return self.items.get(identifier, ItemMetadata(identifier=identifier))


class FakeTitleProvider:
    def __init__(self, metadata: TitleMetadata | None) -> None:
        self.metadata = metadata
        self.calls: list[tuple[str, str]] = []

    async def fetch_title(self, media_type, canonical_id):
        self.calls.append((media_type, canonical_id))
        return self.metadata


class FakeAlternateTitles:
    def __init__(self, result: AlternateTitles | None = None) -> None:
        self.result = result or AlternateTitles()
        self.calls: list[tuple[str, str | None]] = []

    async def fetch_alternate_titles(self, media_type, imdb_id):
        self.calls.append((media_type, imdb_id))
        return self.result


class FakeEpisodeGuide:
    def __init__(self, info: EpisodeInfo | None = None) -> None:
        self.info = info
        self.calls: list[tuple[str, int, int]] = []

    async def fetch_episode(self, show_title, season, episode):
        self.calls.append((show_title, season, episode))
        return self.info


def any_query(query, media_type, collections) -> bool:
    return media_type == "movies"


def unscoped(query, media_type, collections) -> bool:
    return media_type == "movies" and not collections


def scoped_to(name: str):
    def _predicate(query, media_type, collections) -> bool:
        return media_type == "movies" and collections == (name,)

    return _predicate


def collections_search(query, media_type, collections) -> bool:
    return media_type == "collection"


@pytest.fixture
def make_settings():
    def _make(**overrides) -> ResolverSettings:
        overrides.setdefault("use_wikipedia_episode_guide", False)
        return ResolverSettings(**overrides)

    return _make


class FakeResponse:
    def __init__(self, data=None, status_code: int = 200, invalid_json: bool = False):
        self._data = data
        self.status_code = status_code
        self.invalid_json = invalid_json

    def json(self):
        if self.invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("GET", "https://archive.org")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError("error", request=request, response=response)


class FakeAsyncClient:
    """Serves the first route whose key is a substring of the requested URL."""

    def __init__(self, routes: dict[str, FakeResponse | Exception]):
        self.routes = routes
        self.requests: list[tuple[str, object, object]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get(self, url, params=None, headers=None):
        self.requests.append((url, params, headers))
        for key, outcome in self.routes.items():
            if key in url:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return FakeResponse(status_code=404)


@pytest.fixture
def fake_http(mocker):
    def _install(routes: dict[str, FakeResponse | Exception]) -> FakeAsyncClient:
        client = FakeAsyncClient(routes)
        mocker.patch("httpx.AsyncClient", return_value=client)
        return client

    return _install


@pytest.fixture
def json_response():
    return FakeResponse


@pytest.fixture
def fakes():
    return SimpleNamespace(
        SearchGateway=FakeSearchGateway,
        MetadataFetcher=FakeMetadataFetcher,
        TitleProvider=FakeTitleProvider,
        AlternateTitles=FakeAlternateTitles,
        EpisodeGuide=FakeEpisodeGuide,
        any_query=any_query,
        unscoped=unscoped,
        scoped_to=scoped_to,
        collections_search=collections_search,
    )

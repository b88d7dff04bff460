import httpx
import pytest

from archive_streams.cache import NullCache, TTLCache
from archive_streams.errors import MalformedMetadataError, TransientFetchError
from archive_streams.services.archive_client import (
    DEFAULT_QUERY,
    ArchiveClient,
    compose_query,
    parse_item_metadata,
    parse_search_docs,
)

SEARCH_PAYLOAD = {
    "response": {
        "docs": [
            {
                "identifier": "nosferatu1922",
                "title": "Nosferatu (1922)",
                "year": "1922",
                "downloads": 50000,
                "rights": ["Public Domain"],
                "mediatype": "movies",
                "subject": "horror",
            },
            {"title": "No identifier, skipped"},
            {
                "identifier": "nosferatu_trailer",
                "title": ["Nosferatu trailer"],
                "downloads": "12",
                "subject": ["trailer", "silent film"],
            },
        ]
    }
}

METADATA_PAYLOAD = {
    "metadata": {
        "identifier": "nosferatu1922",
        "title": "Nosferatu",
        "rights": "Public Domain",
        "licenseurl": "https://creativecommons.org/publicdomain/mark/1.0/",
    },
    "files": [
        {
            "name": "nosferatu.mp4",
            "size": "700000000",
            "format": "h.264",
            "length": "90:00",
            "height": "480",
            "width": "640",
        },
        {"name": "nosferatu.ogv", "size": "500000000", "length": "5400.12"},
        {"format": "Metadata"},
    ],
}


def test_compose_query():
    assert (
        compose_query('title:("Nosferatu")', "movies", ["feature_films"])
        == 'title:("Nosferatu") AND mediatype:(movies) AND collection:(feature_films)'
    )
    assert compose_query("", "collection") == "mediatype:(collection)"
    assert compose_query("") == DEFAULT_QUERY


def test_parse_search_docs():
    candidates = parse_search_docs(SEARCH_PAYLOAD)

    assert [c.identifier for c in candidates] == ["nosferatu1922", "nosferatu_trailer"]
    first = candidates[0]
    assert first.year == 1922
    assert first.downloads == 50000
    assert first.rights == "Public Domain"
    assert first.subjects == ("horror",)
    assert candidates[1].title == "Nosferatu trailer"
    assert candidates[1].downloads == 12


def test_parse_search_docs_tolerates_missing_docs():
    assert parse_search_docs({"response": {}}) == []
    with pytest.raises(MalformedMetadataError):
        parse_search_docs(["not", "a", "dict"])


def test_parse_item_metadata():
    metadata = parse_item_metadata("nosferatu1922", METADATA_PAYLOAD)

    assert metadata.rights == "Public Domain"
    assert metadata.license_url.startswith("https://creativecommons.org")
    assert [f.name for f in metadata.files] == ["nosferatu.mp4", "nosferatu.ogv"]
    mp4, ogv = metadata.files
    assert mp4.size_bytes == 700_000_000
    assert mp4.duration_seconds == 5400
    assert mp4.height == 480
    assert ogv.duration_seconds == 5400
    assert ogv.height is None


def test_parse_item_metadata_without_files_is_empty():
    assert parse_item_metadata("x", {"metadata": {}}).files == ()
    with pytest.raises(MalformedMetadataError):
        parse_item_metadata("x", None)


@pytest.mark.asyncio
async def test_search_sends_advancedsearch_params_and_caches(fake_http, json_response):
    client = fake_http({"advancedsearch.php": json_response(SEARCH_PAYLOAD)})
    archive = ArchiveClient(TTLCache())

    first = await archive.search(
        'title:("Nosferatu")', media_type="movies", collections=["feature_films"], rows=60
    )
    second = await archive.search(
        'title:("Nosferatu")', media_type="movies", collections=["feature_films"], rows=60
    )

    assert first == second
    assert len(client.requests) == 1
    url, params, headers = client.requests[0]
    assert url.endswith("advancedsearch.php")
    assert (
        "q",
        'title:("Nosferatu") AND mediatype:(movies) AND collection:(feature_films)',
    ) in params
    assert ("fl[]", "identifier") in params
    assert ("sort[]", "downloads desc") in params
    assert ("rows", "60") in params
    assert ("output", "json") in params
    assert headers["User-Agent"].startswith("archive-streams")


@pytest.mark.asyncio
async def test_fetch_metadata_parses_payload(fake_http, json_response):
    client = fake_http({"/metadata/nosferatu1922": json_response(METADATA_PAYLOAD)})
    archive = ArchiveClient(NullCache())

    metadata = await archive.fetch_metadata("nosferatu1922")

    assert metadata.identifier == "nosferatu1922"
    assert len(metadata.files) == 2
    assert client.requests[0][0] == "https://archive.org/metadata/nosferatu1922"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure", ["status", "invalid_json", "timeout", "connect"]
)
async def test_fetch_failures_become_transient_errors(fake_http, json_response, failure):
    outcomes = {
        "status": json_response(status_code=503),
        "invalid_json": json_response(invalid_json=True),
        "timeout": httpx.ReadTimeout("slow"),
        "connect": httpx.ConnectError("refused"),
    }
    fake_http({"/metadata/": outcomes[failure]})
    archive = ArchiveClient(TTLCache())

    with pytest.raises(TransientFetchError) as excinfo:
        await archive.fetch_metadata("broken")

    assert excinfo.value.source == "archive-metadata"


@pytest.mark.asyncio
async def test_failures_are_not_cached(fake_http, json_response):
    cache = TTLCache()
    client = fake_http({"/metadata/": json_response(status_code=500)})
    archive = ArchiveClient(cache)

    for _ in range(2):
        with pytest.raises(TransientFetchError):
            await archive.fetch_metadata("flaky")

    assert len(client.requests) == 2
    assert len(cache) == 0

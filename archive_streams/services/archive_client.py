# archive_streams/services/archive_client.py

from __future__ import annotations

import urllib.parse
from collections.abc import Sequence
from typing import Any, Protocol

from ..cache import TTLCache
from ..config import load_provider_config, logger
from ..errors import MalformedMetadataError
from ..utils import (
    first_text,
    parse_duration_to_seconds,
    parse_int,
    parse_year,
)
from .fetching import fetch_json
from .media_data import Candidate, FileRecord, ItemMetadata

DEFAULT_QUERY = "downloads:[1 TO *]"


class SearchGateway(Protocol):
    async def search(
        self,
        query: str,
        media_type: str | None = "movies",
        collections: Sequence[str] = (),
        rows: int = 60,
    ) -> list[Candidate]: ...


class MetadataFetcher(Protocol):
    async def fetch_metadata(self, identifier: str) -> ItemMetadata: ...


def compose_query(
    query: str, media_type: str | None = None, collections: Sequence[str] = ()
) -> str:
    """Appends media type and collection facets to a free-text query."""
    full = query or ""
    if media_type:
        full += f" AND mediatype:({media_type})"
    for collection in collections:
        full += f" AND collection:({collection})"
    full = full.strip()
    if full.startswith("AND "):
        full = full[4:]
    return full or DEFAULT_QUERY


def parse_search_docs(payload: Any) -> list[Candidate]:
    """Converts an advanced-search JSON payload into candidates."""
    if not isinstance(payload, dict):
        raise MalformedMetadataError("search payload is not an object")
    response = payload.get("response") or {}
    docs = response.get("docs") if isinstance(response, dict) else None
    if not isinstance(docs, list):
        return []

    candidates: list[Candidate] = []
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        identifier = first_text(doc.get("identifier")).strip()
        if not identifier:
            continue
        subjects = doc.get("subject") or ()
        if isinstance(subjects, str):
            subjects = (subjects,)
        candidates.append(
            Candidate(
                identifier=identifier,
                title=first_text(doc.get("title")),
                year=parse_year(doc.get("year")),
                downloads=parse_int(doc.get("downloads")),
                license_url=first_text(doc.get("licenseurl")) or None,
                rights=first_text(doc.get("rights")) or None,
                media_type=first_text(doc.get("mediatype")) or "movies",
                subjects=tuple(str(s) for s in subjects if s),
                description=first_text(doc.get("description")),
            )
        )
    return candidates


def _optional_int(value: Any) -> int | None:
    parsed = parse_int(value, default=-1)
    return parsed if parsed > 0 else None


def parse_item_metadata(identifier: str, payload: Any) -> ItemMetadata:
    """
    Converts a ``/metadata/<identifier>`` payload into an ``ItemMetadata``.

    A payload without a ``files`` list is still valid: the item simply has no
    usable files.
    """
    if not isinstance(payload, dict):
        raise MalformedMetadataError(f"metadata for '{identifier}' is not an object")

    meta = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    raw_files = payload.get("files")
    files: list[FileRecord] = []
    if isinstance(raw_files, list):
        for raw in raw_files:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            files.append(
                FileRecord(
                    name=str(raw["name"]),
                    size_bytes=parse_int(raw.get("size")),
                    format=first_text(raw.get("format")) or None,
                    duration_seconds=parse_duration_to_seconds(raw.get("length")),
                    height=_optional_int(raw.get("height")),
                    width=_optional_int(raw.get("width")),
                    title=first_text(raw.get("title")) or None,
                )
            )
    else:
        logger.debug(f"[META] '{identifier}' has no files list")

    return ItemMetadata(
        identifier=identifier,
        files=tuple(files),
        rights=first_text(meta.get("rights")) or None,
        license_url=first_text(meta.get("licenseurl")) or None,
        title=first_text(meta.get("title")) or None,
    )


class ArchiveClient:
    """Internet Archive advanced search and item metadata, with caching."""

    def __init__(
        self,
        cache: TTLCache,
        timeout: float = 15.0,
        provider_config: dict[str, Any] | None = None,
    ) -> None:
        config = provider_config or load_provider_config()
        self.cache = cache
        self.timeout = timeout
        self.search_url: str = config["archive"]["search_url"]
        self.metadata_url: str = config["archive"]["metadata_url"]
        self.search_fields: list[str] = list(config["archive"]["search_fields"])
        self.sort: str = config["archive"].get("sort", "downloads desc")
        self.search_ttl: float = config["cache_ttl_seconds"]["search"]
        self.metadata_ttl: float = config["cache_ttl_seconds"]["metadata"]

    def _search_params(self, full_query: str, rows: int) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = [("q", full_query)]
        params += [("fl[]", field) for field in self.search_fields]
        params += [
            ("sort[]", self.sort),
            ("rows", str(rows)),
            ("output", "json"),
        ]
        return params

    async def search(
        self,
        query: str,
        media_type: str | None = "movies",
        collections: Sequence[str] = (),
        rows: int = 60,
    ) -> list[Candidate]:
        full_query = compose_query(query, media_type, collections)
        params = self._search_params(full_query, rows)
        cache_key = f"ia-search:{self.search_url}?{urllib.parse.urlencode(params)}"

        async def _run() -> list[Candidate]:
            payload = await fetch_json(
                self.search_url,
                source="archive-search",
                params=params,
                timeout=self.timeout,
            )
            return parse_search_docs(payload)

        results = await self.cache.get_or_compute(cache_key, self.search_ttl, _run)
        logger.debug(f"[SEARCH] {len(results)} docs for: {full_query}")
        return results

    async def fetch_metadata(self, identifier: str) -> ItemMetadata:
        url = self.metadata_url.format(identifier=urllib.parse.quote(identifier, safe=""))

        async def _run() -> ItemMetadata:
            payload = await fetch_json(url, source="archive-metadata", timeout=self.timeout)
            return parse_item_metadata(identifier, payload)

        return await self.cache.get_or_compute(
            f"ia-meta:{identifier}", self.metadata_ttl, _run
        )

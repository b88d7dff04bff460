# archive_streams/services/metadata_providers.py

from __future__ import annotations

import urllib.parse
from typing import Any, Protocol

from ..cache import TTLCache
from ..config import load_provider_config, logger
from ..errors import MalformedMetadataError
from ..utils import extract_first_int, parse_int, parse_year
from .fetching import fetch_json
from .media_data import AlternateTitles, EpisodeInfo, TitleMetadata


class TitleProvider(Protocol):
    async def fetch_title(
        self, media_type: str, canonical_id: str
    ) -> TitleMetadata | None: ...


class AlternateTitlesProvider(Protocol):
    async def fetch_alternate_titles(
        self, media_type: str, imdb_id: str | None
    ) -> AlternateTitles: ...


def parse_cinemeta_meta(payload: Any) -> TitleMetadata | None:
    """Maps a Cinemeta ``meta`` payload; ``None`` when it carries no title."""
    if not isinstance(payload, dict):
        raise MalformedMetadataError("cinemeta payload is not an object")
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return None
    title = (meta.get("name") or meta.get("title") or "").strip()
    if not title:
        return None

    original = (
        meta.get("originalTitle")
        or meta.get("original_name")
        or meta.get("original_title")
    )
    year = parse_year(meta.get("year")) or parse_year(meta.get("releaseInfo"))
    runtime = extract_first_int(str(meta.get("runtime") or ""))
    imdb_id = meta.get("imdb_id") or meta.get("imdbId")

    episodes: list[EpisodeInfo] = []
    videos = meta.get("videos")
    if isinstance(videos, list):
        for video in videos:
            if not isinstance(video, dict):
                continue
            season = parse_int(video.get("season"), default=-1)
            number = parse_int(video.get("episode", video.get("number")), default=-1)
            if season < 0 or number < 1:
                continue
            episodes.append(
                EpisodeInfo(
                    season=season,
                    episode=number,
                    title=(video.get("title") or video.get("name") or None),
                    air_date=(video.get("released") or video.get("firstAired") or None),
                )
            )

    return TitleMetadata(
        title=title,
        original_title=(
            original.strip()
            if isinstance(original, str) and original.strip()
            else None
        ),
        year=year,
        runtime_minutes=runtime or None,
        imdb_id=imdb_id if isinstance(imdb_id, str) and imdb_id else None,
        episodes=tuple(episodes),
    )


class CinemetaProvider:
    """Title, year, runtime and episode list from Cinemeta."""

    def __init__(
        self,
        cache: TTLCache,
        timeout: float = 15.0,
        provider_config: dict[str, Any] | None = None,
    ) -> None:
        config = provider_config or load_provider_config()
        self.cache = cache
        self.timeout = timeout
        self.meta_url: str = config["cinemeta"]["meta_url"]
        self.ttl: float = config["cache_ttl_seconds"]["cinemeta"]

    async def fetch_title(
        self, media_type: str, canonical_id: str
    ) -> TitleMetadata | None:
        url = self.meta_url.format(
            media_type=media_type,
            canonical_id=urllib.parse.quote(canonical_id, safe=""),
        )

        async def _run() -> TitleMetadata | None:
            payload = await fetch_json(url, source="cinemeta", timeout=self.timeout)
            return parse_cinemeta_meta(payload)

        metadata = await self.cache.get_or_compute(
            f"cinemeta:{media_type}:{canonical_id}", self.ttl, _run
        )
        if metadata is None:
            logger.info(f"[CINEMETA] No title for {media_type} '{canonical_id}'")
        return metadata


def extract_tmdb_titles(details: dict[str, Any], media_type: str) -> list[str]:
    """Primary, alternative and translated titles from a TMDB details payload."""
    titles: list[str] = []
    if media_type == "movie":
        primary_keys, alt_key, name_key = ("title", "original_title"), "titles", "title"
    else:
        primary_keys, alt_key, name_key = ("name", "original_name"), "results", "name"

    for key in primary_keys:
        value = details.get(key)
        if isinstance(value, str):
            titles.append(value)

    alternatives = (details.get("alternative_titles") or {}).get(alt_key) or []
    for alt in alternatives:
        if isinstance(alt, dict) and isinstance(alt.get("title"), str):
            titles.append(alt["title"])

    translations = (details.get("translations") or {}).get("translations") or []
    for translation in translations:
        data = translation.get("data") if isinstance(translation, dict) else None
        if isinstance(data, dict) and isinstance(data.get(name_key), str):
            titles.append(data[name_key])

    cleaned: list[str] = []
    for title in titles:
        stripped = title.strip()
        if stripped and stripped not in cleaned:
            cleaned.append(stripped)
    return cleaned


def extract_tmdb_runtime(details: dict[str, Any], media_type: str) -> int | None:
    if media_type == "movie":
        runtime = details.get("runtime")
    else:
        run_times = details.get("episode_run_time") or []
        runtime = run_times[0] if isinstance(run_times, list) and run_times else None
    return runtime if isinstance(runtime, int) and runtime > 0 else None


class TmdbProvider:
    """Alternate and localized titles from TMDB; inert without an API key."""

    def __init__(
        self,
        cache: TTLCache,
        api_key: str | None,
        timeout: float = 15.0,
        provider_config: dict[str, Any] | None = None,
    ) -> None:
        config = provider_config or load_provider_config()
        self.cache = cache
        self.api_key = api_key
        self.timeout = timeout
        self.find_url: str = config["tmdb"]["find_url"]
        self.movie_url: str = config["tmdb"]["movie_url"]
        self.tv_url: str = config["tmdb"]["tv_url"]
        self.append: str = config["tmdb"]["append_to_response"]
        self.ttl: float = config["cache_ttl_seconds"]["tmdb"]

    async def fetch_alternate_titles(
        self, media_type: str, imdb_id: str | None
    ) -> AlternateTitles:
        if not self.api_key or not imdb_id:
            return AlternateTitles()

        found = await self.cache.get_or_compute(
            f"tmdb:find:{imdb_id}", self.ttl, lambda: self._find(imdb_id)
        )
        results_key = "movie_results" if media_type == "movie" else "tv_results"
        matches = found.get(results_key) if isinstance(found, dict) else None
        if not matches or not isinstance(matches[0], dict) or "id" not in matches[0]:
            logger.info(f"[TMDB] No {media_type} match for '{imdb_id}'")
            return AlternateTitles()

        tmdb_id = matches[0]["id"]
        kind = "movie" if media_type == "movie" else "tv"
        details = await self.cache.get_or_compute(
            f"tmdb:{kind}:{tmdb_id}", self.ttl, lambda: self._details(kind, tmdb_id)
        )
        if not isinstance(details, dict):
            raise MalformedMetadataError(f"TMDB details for {tmdb_id} not an object")

        titles = extract_tmdb_titles(details, media_type)
        logger.info(f"[TMDB] {len(titles)} alternate titles for '{imdb_id}'")
        return AlternateTitles(
            tuple(titles), extract_tmdb_runtime(details, media_type)
        )

    async def _find(self, imdb_id: str) -> Any:
        url = self.find_url.format(imdb_id=urllib.parse.quote(imdb_id, safe=""))
        return await fetch_json(
            url,
            source="tmdb-find",
            params={"api_key": self.api_key, "external_source": "imdb_id"},
            timeout=self.timeout,
        )

    async def _details(self, kind: str, tmdb_id: Any) -> Any:
        template = self.movie_url if kind == "movie" else self.tv_url
        return await fetch_json(
            template.format(tmdb_id=tmdb_id),
            source=f"tmdb-{kind}",
            params={"api_key": self.api_key, "append_to_response": self.append},
            timeout=self.timeout,
        )

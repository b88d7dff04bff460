# archive_streams/services/wikipedia.py

import asyncio
import re
import warnings
from datetime import datetime
from typing import Protocol

import wikipedia
from bs4 import BeautifulSoup, GuessedAtParserWarning, Tag

from ..cache import TTLCache
from ..config import load_provider_config, logger
from ..errors import TransientFetchError
from ..utils import extract_first_int
from .media_data import EpisodeInfo

warnings.filterwarnings(
    "ignore", category=GuessedAtParserWarning, module=r"^wikipedia\.wikipedia$"
)

_WIKIPEDIA_TRAILING_QUALIFIER_PATTERN = re.compile(
    r"\s*\((?:[^)]*\b(?:mini[-\s]?series|(?:tv|television)\s+series)[^)]*)\)\s*$",
    re.IGNORECASE,
)
_MONTH_PATTERN = (
    "January|February|March|April|May|June|July|August|September|October|November|December|"
    "Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
)
_RELEASE_DATE_PATTERN = re.compile(
    rf"((?:{_MONTH_PATTERN})\s+\d{{1,2}},\s+\d{{4}}|\d{{1,2}}\s+(?:{_MONTH_PATTERN})\s+\d{{4}}|\d{{4}}-\d{{2}}-\d{{2}})",
    re.IGNORECASE,
)
_RELEASE_DATE_FORMATS = [
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y-%m-%d",
]
_QUOTED_TITLE = re.compile("[\"“”'‘’]([^\"“”'‘’]+)[\"“”'‘’]")


class EpisodeGuide(Protocol):
    async def fetch_episode(
        self, show_title: str, season: int, episode: int
    ) -> EpisodeInfo | None: ...


def _sanitize_wikipedia_title(title: str) -> str:
    cleaned = title
    while True:
        new_cleaned = _WIKIPEDIA_TRAILING_QUALIFIER_PATTERN.sub("", cleaned).strip()
        if new_cleaned == cleaned:
            break
        cleaned = new_cleaned
    return cleaned or title


def extract_release_date_iso(text: str) -> str | None:
    cleaned = re.sub(r"\[[^\]]+\]", "", text or "")
    cleaned = cleaned.replace("\xa0", " ").replace("–", "-").replace("—", "-")
    match = _RELEASE_DATE_PATTERN.search(cleaned)
    if not match:
        return None
    candidate = re.sub(r"\([^)]*\)", "", match.group(0)).strip()
    candidate = re.sub(r"\s+", " ", candidate).strip(",; ")
    if not candidate:
        return None
    normalized = candidate.replace("Sept ", "Sep ").replace("Sept.", "Sep.")
    for fmt in _RELEASE_DATE_FORMATS:
        try:
            return datetime.strptime(normalized, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _extract_title_text(title_cell: Tag) -> str:
    text_full = title_cell.get_text(" ", strip=True)
    quoted = _QUOTED_TITLE.search(text_full)
    if quoted:
        return quoted.group(1).strip()
    italic = title_cell.find("i")
    if isinstance(italic, Tag) and italic.get_text(strip=True):
        return italic.get_text(strip=True)
    return text_full.strip('"')


def _column_indices(
    table: Tag, *, default_ep: int, default_title: int
) -> tuple[int, int, int | None]:
    ep_idx, title_idx = default_ep, default_title
    date_idx: int | None = None
    header_row = table.find("tr")
    if not isinstance(header_row, Tag):
        return ep_idx, title_idx, date_idx

    headers = [th.get_text(strip=True).lower() for th in header_row.find_all("th")]
    for i, h in enumerate(headers):
        if ("no" in h and "season" in h) or ("in season" in h):
            ep_idx = i
            break
    else:
        for i, h in enumerate(headers):
            if "no" in h:
                ep_idx = i
                break
    for i, h in enumerate(headers):
        if "title" in h:
            title_idx = i
            break
    for i, h in enumerate(headers):
        if "date" in h or "aired" in h:
            date_idx = i
            break
    return ep_idx, title_idx, date_idx


def _rows_to_episodes(
    table: Tag, season: int, *, default_ep: int, default_title: int
) -> dict[int, EpisodeInfo]:
    ep_idx, title_idx, date_idx = _column_indices(
        table, default_ep=default_ep, default_title=default_title
    )
    episodes: dict[int, EpisodeInfo] = {}
    for row in table.find_all("tr")[1:]:
        if not isinstance(row, Tag):
            continue
        cells = row.find_all(["th", "td"])
        if len(cells) <= max(ep_idx, title_idx):
            continue
        ep_num = extract_first_int(cells[ep_idx].get_text(" ", strip=True))
        title_cell = cells[title_idx]
        if not ep_num or not isinstance(title_cell, Tag):
            continue
        air_date = None
        if date_idx is not None and len(cells) > date_idx:
            air_date = extract_release_date_iso(cells[date_idx].get_text(" ", strip=True))
        episodes[ep_num] = EpisodeInfo(
            season=season,
            episode=ep_num,
            title=_extract_title_text(title_cell) or None,
            air_date=air_date,
        )
    return episodes


def extract_season_episodes(html: str, season: int) -> dict[int, EpisodeInfo]:
    """
    Parses an episode list page for one season.

    Looks for a "Season N" heading followed by a wikitable first, then falls
    back to the first table under an "Episodes" heading (single-season shows).
    """
    soup = BeautifulSoup(html, "lxml")

    season_header_pattern = re.compile(rf"Season\s+{season}\b", re.IGNORECASE)
    header_tag = soup.find(
        lambda tag: tag.name in ["h2", "h3"]
        and bool(season_header_pattern.search(tag.get_text()))
    )
    if isinstance(header_tag, Tag):
        table = header_tag.find_next("table", class_="wikitable")
        if isinstance(table, Tag):
            episodes = _rows_to_episodes(table, season, default_ep=1, default_title=2)
            if episodes:
                return episodes

    episodes_header_pattern = re.compile(r"Episodes", re.IGNORECASE)
    episodes_header = soup.find(
        lambda tag: tag.name in ["h2", "h3"]
        and bool(episodes_header_pattern.search(tag.get_text()))
    )
    if isinstance(episodes_header, Tag):
        table = episodes_header.find_next("table", class_="wikitable")
        if isinstance(table, Tag):
            return _rows_to_episodes(table, season, default_ep=0, default_title=1)
    return {}


class WikipediaEpisodeGuide:
    """Episode titles and air dates scraped from Wikipedia episode lists."""

    def __init__(self, cache: TTLCache, ttl_seconds: float | None = None) -> None:
        self.cache = cache
        self.ttl = (
            ttl_seconds
            if ttl_seconds is not None
            else load_provider_config()["cache_ttl_seconds"]["wikipedia"]
        )

    async def fetch_episode(
        self, show_title: str, season: int, episode: int
    ) -> EpisodeInfo | None:
        key = f"wiki:{show_title.strip().casefold()}:{season}"
        episodes = await self.cache.get_or_compute(
            key, self.ttl, lambda: self._fetch_season(show_title, season)
        )
        info = episodes.get(episode)
        if info is None:
            logger.info(
                f"[WIKI] No entry for '{show_title}' S{season:02d}E{episode:02d}"
            )
        return info

    async def _fetch_season(self, show_title: str, season: int) -> dict[int, EpisodeInfo]:
        html = await self._episode_list_html(show_title)
        if not html:
            return {}
        episodes = await asyncio.to_thread(extract_season_episodes, html, season)
        logger.info(
            f"[WIKI] Parsed {len(episodes)} episodes for '{show_title}' season {season}"
        )
        return episodes

    async def _episode_list_html(self, show_title: str) -> str | None:
        try:
            search_results = await asyncio.to_thread(wikipedia.search, show_title)
            if not search_results:
                logger.info(f"[WIKI] No Wikipedia page found for '{show_title}'.")
                return None
            main_page = await asyncio.to_thread(
                wikipedia.page, search_results[0], auto_suggest=False, redirect=True
            )
            canonical = _sanitize_wikipedia_title(main_page.title.strip())

            try:
                list_page = await asyncio.to_thread(
                    wikipedia.page,
                    f"List of {canonical} episodes",
                    auto_suggest=False,
                    redirect=True,
                )
                logger.info("[WIKI] Using dedicated episode list page.")
                return await asyncio.to_thread(list_page.html)
            except wikipedia.exceptions.PageError:
                logger.info("[WIKI] No dedicated episode page; using main show page.")
                return await asyncio.to_thread(main_page.html)
        except (wikipedia.exceptions.PageError, wikipedia.exceptions.DisambiguationError):
            logger.info(f"[WIKI] Could not resolve a page for '{show_title}'.")
            return None
        except (wikipedia.exceptions.WikipediaException, OSError) as e:
            raise TransientFetchError("wikipedia", str(e)) from e

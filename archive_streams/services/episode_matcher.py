# archive_streams/services/episode_matcher.py

"""
Decides which file of an archive item is the requested episode.

Each heuristic is an independent ``(file, context) -> bool`` matcher. They are
tried in the order of ``EPISODE_MATCHERS`` and the first one that fires
accepts the file; none is required to agree with another.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date

from ..config import logger
from ..utils import natural_sort_key, normalize
from .media_data import FileRecord

EPISODE_KEYWORDS = (
    "episode",
    "ep",
    "ep.",
    "episodio",
    "episódio",
    "capitulo",
    "capítulo",
    "cap",
    "parte",
    "part",
    "pt",
    "folge",
    "kapitel",
    "chapter",
)
MAX_TITLE_WORDS = 6
MIN_TITLE_CHARS = 3
_SEPARATORS = r"[._ \-]"
# Underscores separate words in archive file names, so \b is not enough.
_START = r"(?<![a-z0-9])"
_END = r"(?!\d)"

_SEASON_MARKERS = (
    re.compile(rf"{_START}s(\d{{1,2}}){_SEPARATORS}?e\d"),
    re.compile(rf"{_START}season{_SEPARATORS}*(\d{{1,2}}){_END}"),
)

AIR_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y.%m.%d",
    "%Y_%m_%d",
    "%Y %m %d",
    "%Y%m%d",
    "%m.%d.%Y",
    "%d.%m.%Y",
)


@dataclass(frozen=True)
class EpisodeContext:
    season: int
    episode: int
    episode_titles: tuple[str, ...] = ()
    air_date_tokens: tuple[str, ...] = ()
    _title_prefixes: tuple[str, ...] = field(init=False, repr=False, default=())

    def __post_init__(self) -> None:
        prefixes: list[str] = []
        for title in self.episode_titles:
            words = normalize(title).split()[:MAX_TITLE_WORDS]
            prefix = " ".join(words)
            if len(prefix) >= MIN_TITLE_CHARS and prefix not in prefixes:
                prefixes.append(prefix)
        object.__setattr__(self, "_title_prefixes", tuple(prefixes))

    @property
    def title_prefixes(self) -> tuple[str, ...]:
        return self._title_prefixes


EpisodeMatcher = Callable[[FileRecord, EpisodeContext], bool]


def air_date_tokens(air_date: str | None) -> tuple[str, ...]:
    """Renders an ISO air date (``2008-01-20`` or a full timestamp) several ways."""
    if not air_date:
        return ()
    try:
        parsed = date.fromisoformat(air_date.strip()[:10])
    except ValueError:
        return ()
    return tuple(dict.fromkeys(parsed.strftime(fmt) for fmt in AIR_DATE_FORMATS))


def _marks_other_season(name: str, season: int) -> bool:
    """True when the lowered name carries a season marker for another season."""
    return any(
        int(match.group(1)) != season
        for marker in _SEASON_MARKERS
        for match in marker.finditer(name)
    )


def structured_pattern(file: FileRecord, ctx: EpisodeContext) -> bool:
    """``S02E05``, ``2x05``, ``s2.e5``, ``Season 2 Episode 5``, bare ``E05``."""
    name = file.name.lower()
    s, e = ctx.season, ctx.episode
    patterns = (
        rf"{_START}s0*{s}{_SEPARATORS}?e0*{e}{_END}",
        rf"{_START}0*{s}x0*{e}{_END}",
        rf"{_START}season{_SEPARATORS}*0*{s}{_SEPARATORS}*(?:episode|ep\.?){_SEPARATORS}*0*{e}{_END}",
    )
    if not _marks_other_season(name, s):
        patterns += (rf"{_START}e0*{e}{_END}",)
    return any(re.search(p, name) for p in patterns)


def localized_keyword(file: FileRecord, ctx: EpisodeContext) -> bool:
    """Episode keyword in any of the usual languages followed by the number."""
    name = file.name.lower()
    if _marks_other_season(name, ctx.season):
        return False
    for keyword in EPISODE_KEYWORDS:
        pattern = rf"{_START}{re.escape(keyword)}{_SEPARATORS}*0*{ctx.episode}{_END}"
        if re.search(pattern, name):
            return True
    return False


def episode_title_substring(file: FileRecord, ctx: EpisodeContext) -> bool:
    """Leading words of a known episode title appear in the name or file title."""
    if not ctx.title_prefixes:
        return False
    haystacks = [normalize(file.name), normalize(file.title)]
    return any(
        prefix in haystack
        for prefix in ctx.title_prefixes
        for haystack in haystacks
        if haystack
    )


def air_date_token(file: FileRecord, ctx: EpisodeContext) -> bool:
    if not ctx.air_date_tokens:
        return False
    haystacks = [file.name.lower(), (file.title or "").lower()]
    return any(token in h for token in ctx.air_date_tokens for h in haystacks if h)


EPISODE_MATCHERS: tuple[tuple[str, EpisodeMatcher], ...] = (
    ("structured_pattern", structured_pattern),
    ("localized_keyword", localized_keyword),
    ("episode_title_substring", episode_title_substring),
    ("air_date_token", air_date_token),
)


def matching_heuristic(
    file: FileRecord,
    ctx: EpisodeContext,
    matchers: Sequence[tuple[str, EpisodeMatcher]] = EPISODE_MATCHERS,
) -> str | None:
    """Name of the first heuristic accepting ``file``, or ``None``."""
    for name, matcher in matchers:
        if matcher(file, ctx):
            return name
    return None


def match_episode_file(
    videos: Sequence[FileRecord], ctx: EpisodeContext
) -> FileRecord | None:
    """
    Largest file among those accepted by any heuristic.

    Several matches are assumed to be copies of the same episode at different
    qualities. A mis-tagged different episode is indistinguishable here.
    """
    matches: list[FileRecord] = []
    for file in videos:
        heuristic = matching_heuristic(file, ctx)
        if heuristic:
            logger.debug(f"[EPISODE] '{file.name}' matched via {heuristic}")
            matches.append(file)
    if not matches:
        return None
    return max(matches, key=lambda f: f.size_bytes)


def select_episode_file(
    videos: Sequence[FileRecord],
    ctx: EpisodeContext,
    candidate_score: float,
    relaxed_threshold: float,
    strict: bool = False,
) -> FileRecord | None:
    """
    Heuristic match first. Otherwise a lone video file is accepted only when
    the candidate itself scored above ``relaxed_threshold`` (never in strict
    mode).
    """
    matched = match_episode_file(videos, ctx)
    if matched is not None:
        return matched
    if not strict and len(videos) == 1 and candidate_score > relaxed_threshold:
        logger.debug(
            f"[EPISODE] Accepting lone file '{videos[0].name}' on score "
            f"{candidate_score:.2f}"
        )
        return videos[0]
    return None


def _has_season_marker(name: str, season: int) -> bool:
    lowered = name.lower()
    return bool(
        re.search(rf"{_START}s0*{season}(?:e\d+)?{_END}", lowered)
        or re.search(rf"{_START}season{_SEPARATORS}*0*{season}{_END}", lowered)
    )


def positional_guess(
    videos: Sequence[FileRecord],
    ctx: EpisodeContext,
    expected_runtime_minutes: int | None,
    max_variance_minutes: float,
) -> FileRecord | None:
    """
    Last resort for packed items: the ``episode``-th file in natural order.

    When enough files carry a marker for the requested season only those are
    considered. The guess is rejected if its duration strays from the expected
    runtime by more than ``max_variance_minutes``.
    """
    if len(videos) < 2 or ctx.episode < 1:
        return None

    pool = list(videos)
    season_files = [f for f in pool if _has_season_marker(f.name, ctx.season)]
    if len(season_files) >= ctx.episode:
        pool = season_files

    ordered = sorted(pool, key=lambda f: natural_sort_key(f.name))
    index = ctx.episode - 1
    if index >= len(ordered):
        return None

    guess = ordered[index]
    seconds = guess.duration_seconds
    if expected_runtime_minutes and seconds is not None:
        variance = abs(seconds / 60 - expected_runtime_minutes)
        if variance > max_variance_minutes:
            logger.debug(
                f"[EPISODE] Positional guess '{guess.name}' rejected: runtime off "
                f"by {variance:.0f} min"
            )
            return None
    return guess

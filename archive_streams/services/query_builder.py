# archive_streams/services/query_builder.py

from collections.abc import Sequence


def _phrase(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace('"', '\\"')
    return f'title:("{escaped}")'


def _quoted(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'("{escaped}")'


def _dedupe(queries: list[str]) -> list[str]:
    return list(dict.fromkeys(queries))


def year_range_filter(year: int | None, before: int = 1, after: int = 2) -> str:
    if not year:
        return ""
    return f" AND year:[{year - before} TO {year + after}]"


def popularity_filter(floor: int) -> str:
    return f" AND downloads:[{floor} TO *]"


def episode_patterns(season: int, episode: int) -> list[str]:
    """Season/episode fragments in the order they are tried."""
    return [
        f"S{season:02d}E{episode:02d}",
        f"{season}x{episode:02d}",
        f'"Season {season}" AND ("Episode {episode}" OR "Ep {episode}" OR "Ep. {episode}")',
        f'"Episode {episode}"',
        f'"Part {episode}"',
    ]


def build_movie_queries(
    terms: Sequence[str],
    year: int | None,
    *,
    max_terms: int = 6,
    range_before: int = 1,
    range_after: int = 2,
    popularity_floor: int = 10,
) -> list[str]:
    """
    One exact-year phrase query per term, then a looser year-range variant
    with a popularity floor per term.
    """
    phrases = [_phrase(t) for t in terms[:max_terms] if t]
    year_exact = f" AND year:{year}" if year else ""
    year_range = year_range_filter(year, range_before, range_after)

    queries = [p + year_exact for p in phrases]
    queries += [p + year_range + popularity_filter(popularity_floor) for p in phrases]
    return _dedupe(queries)


def build_episode_queries(
    terms: Sequence[str],
    season: int,
    episode: int,
    year: int | None,
    episode_title: str | None = None,
    *,
    max_terms: int = 6,
    range_before: int = 1,
    range_after: int = 2,
    popularity_floor: int = 10,
) -> list[str]:
    """
    Every term combined with every season/episode pattern, then an episode
    title phrase per term when one is known, then a catch-all per term.
    """
    phrases = [_phrase(t) for t in terms[:max_terms] if t]
    year_range = year_range_filter(year, range_before, range_after)

    queries: list[str] = []
    for phrase in phrases:
        for pattern in episode_patterns(season, episode):
            queries.append(f"{phrase} AND ({pattern}){year_range}")

    if episode_title and episode_title.strip():
        title_phrase = _quoted(episode_title.strip())
        for phrase in phrases:
            queries.append(f"{phrase} AND {title_phrase}{year_range}")

    for phrase in phrases:
        queries.append(f"{phrase}{year_range}{popularity_filter(popularity_floor)}")

    return _dedupe(queries)


def build_collection_queries(terms: Sequence[str], *, max_terms: int = 6) -> list[str]:
    """Title phrases used to discover collections named after the title."""
    return _dedupe([_phrase(t) for t in terms[:max_terms] if t])

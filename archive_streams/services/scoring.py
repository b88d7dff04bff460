# archive_streams/services/scoring.py

import math
import re
from collections.abc import Iterable, Sequence

from ..config import logger
from ..utils import normalize, token_set_similarity
from .media_data import Candidate, ScoredCandidate

EXACT_YEAR_BONUS = 0.25
NEAR_YEAR_BONUS = 0.15
POPULARITY_DIVISOR = 50

_JUNK_PATTERN = re.compile(
    r"\b(?:trailers?|teasers?|clips?|samples?|promos?|announcement|"
    r"music\s+video|fan\s+edit|mashup|reviews?|reactions?|parody|parodies|"
    r"bloopers|behind\s+the\s+scenes)\b"
)


def is_junk(candidate: Candidate) -> bool:
    """Flags trailers, clips, reviews and similar non-feature uploads."""
    haystacks = [candidate.title, *candidate.subjects, candidate.description]
    return any(_JUNK_PATTERN.search(normalize(text)) for text in haystacks if text)


def title_similarity(candidate_title: str, titles: Iterable[str]) -> float:
    return max((token_set_similarity(t, candidate_title) for t in titles), default=0.0)


def year_bonus(wanted: int | None, have: int | None) -> float:
    if not wanted or not have:
        return 0.0
    distance = abs(have - wanted)
    if distance == 0:
        return EXACT_YEAR_BONUS
    if distance <= 1:
        return NEAR_YEAR_BONUS
    return 0.0


def popularity_bonus(downloads: int) -> float:
    """Log-damped download count; ten million downloads adds only 0.14."""
    return math.log10(max(downloads, 1) + 1) / POPULARITY_DIVISOR


def score_candidate(
    candidate: Candidate, titles: Sequence[str], year: int | None
) -> float:
    """
    Confidence that ``candidate`` is the requested title.

    Title similarity (0-1) dominates; the year bonus and popularity term are
    small enough that neither can overturn a large similarity gap.
    """
    return (
        title_similarity(candidate.title, titles)
        + year_bonus(year, candidate.year)
        + popularity_bonus(candidate.downloads)
    )


def dedupe_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keeps the first occurrence of each identifier, preserving order."""
    seen: set[str] = set()
    unique: list[Candidate] = []
    for candidate in candidates:
        if not candidate.identifier or candidate.identifier in seen:
            continue
        seen.add(candidate.identifier)
        unique.append(candidate)
    return unique


def rank_candidates(
    candidates: Iterable[Candidate],
    titles: Sequence[str],
    year: int | None,
    limit: int,
) -> list[ScoredCandidate]:
    """Drops junk, dedupes, scores and returns the top ``limit`` candidates."""
    kept: list[Candidate] = []
    junk = 0
    for candidate in candidates:
        if is_junk(candidate):
            junk += 1
            continue
        kept.append(candidate)

    unique = dedupe_candidates(kept)
    scored = [ScoredCandidate(c, score_candidate(c, titles, year)) for c in unique]
    # sorted() is stable, so equal scores keep their search order.
    scored = sorted(scored, key=lambda s: s.score, reverse=True)[:limit]

    logger.info(
        f"[SCORE] {len(unique)} unique candidates ({junk} junk dropped); "
        f"shortlisted {len(scored)}"
    )
    return scored


def log_shortlist(label: str, shortlist: Sequence[ScoredCandidate]) -> None:
    """
    Emits a structured log entry enumerating each shortlisted candidate so
    operators can see exactly what will be inspected, in order.
    """
    lines = [f"--- {label} Shortlist ---"]
    if not shortlist:
        lines.append("No candidates.")
    for idx, scored in enumerate(shortlist, start=1):
        c = scored.candidate
        lines.append(
            f"{idx:>2}. {c.identifier} | {c.title!r} | year={c.year} | "
            f"downloads={c.downloads} | score={scored.score:.3f}"
        )
    lines.append("--------------------")
    logger.debug("\n".join(lines))

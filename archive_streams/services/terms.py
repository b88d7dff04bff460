# archive_streams/services/terms.py

from collections.abc import Iterable

from ..utils import normalize
from .media_data import SearchTerms

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "as", "at", "by", "de", "der", "die", "el", "en",
        "et", "for", "from", "in", "is", "it", "la", "le", "les", "of", "on",
        "or", "the", "to", "und", "with",
    }
)
_VOWELS = frozenset("aeiou")
MIN_ACRONYM_LENGTH = 2
MAX_ACRONYM_LENGTH = 12


def expand_search_terms(
    primary: str,
    alternates: Iterable[str] = (),
    max_acronyms_per_title: int = 3,
) -> SearchTerms:
    """
    Builds the ordered term set for a title.

    The primary title always comes first. Alternates are appended in the
    order given, skipping any whose normalized form was already seen.
    Acronyms follow all titles, at most ``max_acronyms_per_title`` per title.
    """
    titles: list[str] = []
    seen: set[str] = set()
    for raw in (primary, *alternates):
        title = (raw or "").strip()
        key = normalize(title)
        if not key or key in seen:
            continue
        seen.add(key)
        titles.append(title)

    acronyms: list[str] = []
    for title in titles:
        for acronym in derive_acronyms(title)[:max_acronyms_per_title]:
            if acronym in seen:
                continue
            seen.add(acronym)
            acronyms.append(acronym)

    return SearchTerms(titles=tuple(titles), acronyms=tuple(acronyms))


def derive_acronyms(title: str) -> list[str]:
    """
    Returns acronym variants of ``title`` in preference order: full initials,
    initials without vowels, initials of capitalized words.

    Titles with fewer than two meaningful (non stop-word) words yield nothing,
    which keeps single-letter noise out of the term set.
    """
    words = normalize(title).split()
    meaningful = [w for w in words if w not in STOP_WORDS]
    if len(meaningful) < 2:
        return []

    full = "".join(w[0] for w in words)
    no_vowels = "".join(ch for ch in full if ch not in _VOWELS)
    capitalized = "".join(
        w[0] for w in title.split() if w[:1].isalpha() and w[:1].isupper()
    ).lower()
    capitalized = normalize(capitalized).replace(" ", "")

    variants: list[str] = []
    for variant in (full, no_vowels, capitalized):
        if not (MIN_ACRONYM_LENGTH <= len(variant) <= MAX_ACRONYM_LENGTH):
            continue
        if variant in STOP_WORDS or variant in variants:
            continue
        variants.append(variant)
    return variants

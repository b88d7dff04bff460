from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class SearchTerms:
    """Ordered search terms: titles first (primary title leading), then acronyms."""

    titles: tuple[str, ...]
    acronyms: tuple[str, ...] = ()

    @property
    def primary(self) -> str:
        return self.titles[0] if self.titles else ""

    def all(self) -> list[str]:
        return [*self.titles, *self.acronyms]

    def __len__(self) -> int:
        return len(self.titles) + len(self.acronyms)


@dataclass(frozen=True)
class Candidate:
    """A single archive item returned by a full-text search.

    Attributes:
        identifier: Archive identifier, unique key of the item.
        title: Display title of the item.
        year: Optional release year parsed from the record.
        downloads: Download count reported by the archive.
        license_url: Optional declared license URL.
        rights: Optional free-text rights statement.
        media_type: Archive media type ("movies", "collection", ...).
        subjects: Subject tags, used only by the junk heuristic.
        description: Item description, used only by the junk heuristic.
        position: Order of first appearance across a phase's queries.
    """

    identifier: str
    title: str
    year: Optional[int] = None
    downloads: int = 0
    license_url: Optional[str] = None
    rights: Optional[str] = None
    media_type: str = "movies"
    subjects: tuple[str, ...] = ()
    description: str = ""
    position: int = 0


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: float

    @property
    def identifier(self) -> str:
        return self.candidate.identifier


@dataclass(frozen=True)
class FileRecord:
    name: str
    size_bytes: int = 0
    format: Optional[str] = None
    duration_seconds: Optional[int] = None
    height: Optional[int] = None
    width: Optional[int] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class ItemMetadata:
    identifier: str
    files: tuple[FileRecord, ...] = ()
    rights: Optional[str] = None
    license_url: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class EpisodeInfo:
    season: int
    episode: int
    title: Optional[str] = None
    air_date: Optional[str] = None


@dataclass(frozen=True)
class TitleMetadata:
    title: str
    original_title: Optional[str] = None
    year: Optional[int] = None
    runtime_minutes: Optional[int] = None
    imdb_id: Optional[str] = None
    episodes: tuple[EpisodeInfo, ...] = ()

    def find_episode(self, season: int, episode: int) -> EpisodeInfo | None:
        for info in self.episodes:
            if info.season == season and info.episode == episode:
                return info
        return None


@dataclass(frozen=True)
class AlternateTitles:
    """Localized and alternate names of a title, plus a runtime fallback."""

    titles: tuple[str, ...] = ()
    runtime_minutes: Optional[int] = None


@dataclass(frozen=True)
class Stream:
    label: str
    title: str
    url: str
    group_key: str

    def as_payload(self) -> dict[str, Any]:
        """Addon wire shape of the stream."""
        return {
            "name": self.label,
            "title": self.title,
            "url": self.url,
            "behaviorHints": {"bingeGroup": self.group_key},
        }


@dataclass
class ResolveRequest:
    """Everything the phases need to know about one resolution."""

    media_type: str
    terms: SearchTerms
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_titles: list[str] = field(default_factory=list)
    air_date: Optional[str] = None
    runtime_minutes: Optional[int] = None

    @property
    def is_episode(self) -> bool:
        return self.season is not None and self.episode is not None

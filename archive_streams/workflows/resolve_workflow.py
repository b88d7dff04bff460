# archive_streams/workflows/resolve_workflow.py

"""
Phased fallback orchestration for stream resolution.

The search runs as an explicit state machine. Each phase builds queries,
searches, ranks, then inspects the shortlist; the first phase that yields at
least one stream ends the run. Later phases are progressively looser:

    movie:   scoped -> unscoped -> done
    episode: scoped -> unscoped -> collection fallback -> positional guess -> done

The positional guess only runs when ``allow_positional_guess`` is set.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from thefuzz import fuzz

from ..cache import TTLCache
from ..config import (
    EPISODE_STREAM_LABEL,
    POSITIONAL_STREAM_LABEL,
    STREAM_LABEL,
    ResolverSettings,
    load_settings,
    logger,
)
from ..errors import NotFoundError, TransientFetchError, attempt
from ..services.archive_client import ArchiveClient, MetadataFetcher, SearchGateway
from ..services.episode_matcher import (
    EpisodeContext,
    air_date_tokens,
    positional_guess,
    select_episode_file,
)
from ..services.file_selector import build_stream, select_movie_files, video_files
from ..services.license import is_permissive
from ..services.media_data import (
    Candidate,
    EpisodeInfo,
    ItemMetadata,
    ResolveRequest,
    ScoredCandidate,
    Stream,
)
from ..services.metadata_providers import (
    AlternateTitlesProvider,
    CinemetaProvider,
    TitleProvider,
    TmdbProvider,
)
from ..services.query_builder import (
    build_collection_queries,
    build_episode_queries,
    build_movie_queries,
)
from ..services.scoring import is_junk, log_shortlist, rank_candidates
from ..services.terms import expand_search_terms
from ..services.wikipedia import EpisodeGuide, WikipediaEpisodeGuide
from ..utils import normalize

SUPPORTED_MEDIA_TYPES = ("movie", "series")
ARCHIVE_VIDEO_MEDIATYPE = "movies"
ARCHIVE_COLLECTION_MEDIATYPE = "collection"


class Phase(str, Enum):
    """States of the phased fallback search."""

    SCOPED_SEARCH = "scoped_search"
    UNSCOPED_SEARCH = "unscoped_search"
    COLLECTION_FALLBACK = "collection_fallback"
    POSITIONAL_GUESS = "positional_guess"
    DONE = "done"


MOVIE_TRANSITIONS: dict[Phase, Phase] = {
    Phase.SCOPED_SEARCH: Phase.UNSCOPED_SEARCH,
    Phase.UNSCOPED_SEARCH: Phase.DONE,
}
EPISODE_TRANSITIONS: dict[Phase, Phase] = {
    Phase.SCOPED_SEARCH: Phase.UNSCOPED_SEARCH,
    Phase.UNSCOPED_SEARCH: Phase.COLLECTION_FALLBACK,
    Phase.COLLECTION_FALLBACK: Phase.POSITIONAL_GUESS,
    Phase.POSITIONAL_GUESS: Phase.DONE,
}


def next_phase(
    current: Phase, *, is_episode: bool, produced: int, allow_positional_guess: bool
) -> Phase:
    """First success wins; otherwise move to the next looser phase."""
    if produced > 0:
        return Phase.DONE
    transitions = EPISODE_TRANSITIONS if is_episode else MOVIE_TRANSITIONS
    following = transitions.get(current, Phase.DONE)
    if following is Phase.POSITIONAL_GUESS and not allow_positional_guess:
        return Phase.DONE
    return following


def split_stream_id(
    canonical_id: str, season: int | None, episode: int | None
) -> tuple[str, int | None, int | None]:
    """Accepts ``tt0903747:1:2`` style ids when season/episode are not given."""
    parts = canonical_id.split(":")
    if len(parts) == 3 and season is None and episode is None:
        try:
            return parts[0], int(parts[1]), int(parts[2])
        except ValueError:
            return canonical_id, season, episode
    return canonical_id, season, episode


@dataclass
class RunState:
    """Mutable bookkeeping for one ``resolve`` call."""

    deadline: float
    clock: Callable[[], float]
    streams: list[Stream] = field(default_factory=list)
    shortlisted: dict[str, ScoredCandidate] = field(default_factory=dict)
    phase_log: list[tuple[Phase, int]] = field(default_factory=list)

    def expired(self) -> bool:
        return self.clock() >= self.deadline


class Resolver:
    """Resolves a movie or an episode to ranked Internet Archive streams."""

    def __init__(
        self,
        settings: ResolverSettings,
        search_gateway: SearchGateway,
        metadata_fetcher: MetadataFetcher,
        title_provider: TitleProvider,
        alternate_titles: AlternateTitlesProvider | None = None,
        episode_guide: EpisodeGuide | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.search_gateway = search_gateway
        self.metadata_fetcher = metadata_fetcher
        self.title_provider = title_provider
        self.alternate_titles = alternate_titles
        self.episode_guide = episode_guide
        self.clock = clock

    async def resolve(
        self,
        media_type: str,
        canonical_id: str,
        season: int | None = None,
        episode: int | None = None,
    ) -> dict[str, list[Stream]]:
        """Never raises: every failure resolves to ``{"streams": []}``."""
        try:
            request = await self.build_request(media_type, canonical_id, season, episode)
        except NotFoundError as e:
            logger.info(f"[RESOLVE] Nothing to resolve for '{canonical_id}': {e}")
            return {"streams": []}
        except TransientFetchError as e:
            logger.warning(f"[RESOLVE] Title lookup failed for '{canonical_id}': {e}")
            return {"streams": []}
        except Exception:
            logger.exception(f"[RESOLVE] Unexpected error preparing '{canonical_id}'")
            return {"streams": []}

        try:
            streams = await self.run_phases(request)
        except Exception:
            logger.exception(f"[RESOLVE] Unexpected error resolving '{canonical_id}'")
            return {"streams": []}

        logger.info(
            f"[RESOLVE] {media_type} '{canonical_id}' -> {len(streams)} streams"
        )
        return {"streams": streams}

    async def build_request(
        self,
        media_type: str,
        canonical_id: str,
        season: int | None,
        episode: int | None,
    ) -> ResolveRequest:
        if media_type not in SUPPORTED_MEDIA_TYPES:
            raise NotFoundError(f"unsupported media type '{media_type}'")

        base_id, season, episode = split_stream_id(canonical_id, season, episode)
        if media_type == "series" and (not season or not episode):
            raise NotFoundError("series request without season/episode")

        metadata = await self.title_provider.fetch_title(media_type, base_id)
        if metadata is None or not metadata.title:
            raise NotFoundError("title provider returned no title")

        imdb_id = metadata.imdb_id or (base_id if base_id.startswith("tt") else None)
        alternates: list[str] = []
        runtime = metadata.runtime_minutes
        if metadata.original_title:
            alternates.append(metadata.original_title)
        if self.alternate_titles is not None:
            result = await attempt(
                self.alternate_titles.fetch_alternate_titles(media_type, imdb_id),
                f"alternate titles for '{imdb_id}'",
            )
            if result.ok and result.value is not None:
                alternates.extend(result.value.titles)
                runtime = runtime or result.value.runtime_minutes

        terms = expand_search_terms(metadata.title, alternates)
        logger.info(
            f"[RESOLVE] '{terms.primary}' ({metadata.year}) -> {len(terms)} terms, "
            f"{len(terms.acronyms)} of them acronyms"
        )

        request = ResolveRequest(
            media_type=media_type,
            terms=terms,
            year=metadata.year,
            runtime_minutes=runtime,
        )
        if media_type == "series":
            request.season, request.episode = season, episode
            await self._attach_episode_details(request, metadata)
        return request

    async def _attach_episode_details(self, request: ResolveRequest, metadata) -> None:
        assert request.season is not None and request.episode is not None
        info = metadata.find_episode(request.season, request.episode)
        if info is not None:
            if info.title:
                request.episode_titles.append(info.title)
            request.air_date = info.air_date

        needs_more = not request.episode_titles or not request.air_date
        if (
            needs_more
            and self.episode_guide is not None
            and self.settings.use_wikipedia_episode_guide
        ):
            guide = await self._consult_episode_guide(
                metadata.title, request.season, request.episode
            )
            if guide is not None:
                if guide.title and guide.title not in request.episode_titles:
                    request.episode_titles.append(guide.title)
                request.air_date = request.air_date or guide.air_date

    async def _bounded_guide_lookup(
        self, show_title: str, season: int, episode: int
    ) -> EpisodeInfo | None:
        assert self.episode_guide is not None
        timeout = self.settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.episode_guide.fetch_episode(show_title, season, episode),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientFetchError(
                "episode-guide", f"no answer within {timeout:.1f}s"
            ) from e

    async def _consult_episode_guide(
        self, show_title: str, season: int, episode: int
    ) -> EpisodeInfo | None:
        """The guide only adds match hints, so any failure just drops them."""
        try:
            result = await attempt(
                self._bounded_guide_lookup(show_title, season, episode),
                f"episode guide for '{show_title}'",
            )
        except Exception:
            logger.exception(
                f"[RESOLVE] Episode guide failed for '{show_title}'; continuing without it"
            )
            return None
        return result.value if result.ok else None

    # --- State machine ---

    async def run_phases(self, request: ResolveRequest) -> list[Stream]:
        state = RunState(
            deadline=self.clock() + self.settings.deadline_seconds, clock=self.clock
        )
        phase = Phase.SCOPED_SEARCH
        while phase is not Phase.DONE:
            if state.expired():
                logger.warning(f"[PHASE] Deadline reached before {phase.value}")
                break
            produced = await self._run_phase(phase, request, state)
            state.phase_log.append((phase, produced))
            following = next_phase(
                phase,
                is_episode=request.is_episode,
                produced=produced,
                allow_positional_guess=self.settings.allow_positional_guess,
            )
            logger.info(
                f"[PHASE] {phase.value} produced {produced} streams -> {following.value}"
            )
            phase = following
        return state.streams[: self.settings.max_streams_per_title]

    async def _run_phase(
        self, phase: Phase, request: ResolveRequest, state: RunState
    ) -> int:
        before = len(state.streams)
        if phase is Phase.SCOPED_SEARCH:
            scopes = [(c,) for c in self.settings.collection_scope_list]
            if not scopes:
                logger.info("[PHASE] No collection scope configured; skipping.")
                return 0
            await self._search_phase(phase, request, state, scopes)
        elif phase is Phase.UNSCOPED_SEARCH:
            await self._search_phase(phase, request, state, [()])
        elif phase is Phase.COLLECTION_FALLBACK:
            collections = await self._discover_collections(request, state)
            if not collections:
                logger.info("[PHASE] No matching collections found.")
                return 0
            await self._search_phase(
                phase, request, state, [(c.identifier,) for c in collections]
            )
        elif phase is Phase.POSITIONAL_GUESS:
            await self._positional_guess_phase(request, state)
        return len(state.streams) - before

    # --- Search phases ---

    def _queries_for(self, request: ResolveRequest) -> list[str]:
        s = self.settings
        terms = request.terms.all()
        if request.is_episode:
            assert request.season is not None and request.episode is not None
            return build_episode_queries(
                terms,
                request.season,
                request.episode,
                request.year,
                request.episode_titles[0] if request.episode_titles else None,
                max_terms=s.max_query_terms,
                range_before=s.year_range_before,
                range_after=s.year_range_after,
                popularity_floor=s.popularity_floor,
            )
        return build_movie_queries(
            terms,
            request.year,
            max_terms=s.max_query_terms,
            range_before=s.year_range_before,
            range_after=s.year_range_after,
            popularity_floor=s.popularity_floor,
        )

    async def _search_phase(
        self,
        phase: Phase,
        request: ResolveRequest,
        state: RunState,
        scopes: Sequence[tuple[str, ...]],
    ) -> None:
        s = self.settings
        if request.is_episode:
            rows, ceiling, limit = (
                s.episode_search_rows,
                s.episode_candidate_ceiling,
                s.episode_shortlist_size,
            )
        else:
            rows, ceiling, limit = (
                s.movie_search_rows,
                s.movie_candidate_ceiling,
                s.movie_shortlist_size,
            )

        queries = self._queries_for(request)
        # The phase budget is shared evenly; earlier scopes take the remainder.
        share, extra = divmod(s.max_queries_per_phase, len(scopes))
        plan = [
            (q, scope)
            for i, scope in enumerate(scopes)
            for q in queries[: share + (1 if i < extra else 0)]
        ]

        candidates: list[Candidate] = []
        for query, scope in plan:
            if state.expired():
                logger.warning(f"[SEARCH] Deadline reached during {phase.value}")
                break
            result = await attempt(
                self.search_gateway.search(
                    query, media_type=ARCHIVE_VIDEO_MEDIATYPE, collections=scope, rows=rows
                ),
                f"query {query!r}",
            )
            if not result.ok or not result.value:
                continue
            for candidate in result.value:
                if not is_junk(candidate):
                    candidates.append(replace(candidate, position=len(candidates)))
            if len(candidates) > ceiling:
                logger.info(f"[SEARCH] Candidate ceiling {ceiling} reached")
                break

        logger.info(
            f"[SEARCH] {phase.value}: {len(plan)} queries planned, "
            f"{len(candidates)} candidates collected"
        )
        shortlist = rank_candidates(candidates, request.terms.titles, request.year, limit)
        log_shortlist(phase.value, shortlist)
        for scored in shortlist:
            state.shortlisted.setdefault(scored.identifier, scored)
        await self._inspect_shortlist(request, state, shortlist)

    async def _inspect_shortlist(
        self,
        request: ResolveRequest,
        state: RunState,
        shortlist: Sequence[ScoredCandidate],
    ) -> None:
        """
        Fetches metadata in windows of ``metadata_concurrency`` and evaluates
        each window in rank order, so concurrency never reorders results.
        """
        cap = self.settings.max_streams_per_title
        window = max(1, self.settings.metadata_concurrency)
        context = self._episode_context(request)

        for start in range(0, len(shortlist), window):
            if len(state.streams) >= cap or state.expired():
                break
            batch = shortlist[start : start + window]
            results = await asyncio.gather(
                *(
                    attempt(
                        self.metadata_fetcher.fetch_metadata(scored.identifier),
                        f"metadata for '{scored.identifier}'",
                    )
                    for scored in batch
                )
            )
            for scored, result in zip(batch, results):
                if len(state.streams) >= cap:
                    break
                if not result.ok or result.value is None:
                    continue
                state.streams.extend(
                    self._streams_for(request, scored, result.value, context)[
                        : cap - len(state.streams)
                    ]
                )

    def _episode_context(self, request: ResolveRequest) -> EpisodeContext | None:
        if not request.is_episode:
            return None
        assert request.season is not None and request.episode is not None
        return EpisodeContext(
            season=request.season,
            episode=request.episode,
            episode_titles=tuple(request.episode_titles),
            air_date_tokens=air_date_tokens(request.air_date),
        )

    def _streams_for(
        self,
        request: ResolveRequest,
        scored: ScoredCandidate,
        metadata: ItemMetadata,
        context: EpisodeContext | None,
    ) -> list[Stream]:
        s = self.settings
        if not is_permissive(
            scored.candidate, metadata, s.require_permissive_license_only
        ):
            logger.info(f"[META] '{scored.identifier}' rejected by license filter")
            return []

        if context is None:
            files = select_movie_files(
                metadata.files, scored.score, request.runtime_minutes, s
            )
            if not files:
                logger.debug(f"[META] '{scored.identifier}' has no usable feature files")
            return [build_stream(scored.identifier, f, STREAM_LABEL) for f in files]

        videos = video_files(metadata.files, s.min_feature_size_bytes)
        chosen = select_episode_file(
            videos, context, scored.score, s.title_score_relaxed, strict=s.strict_mode
        )
        if chosen is None:
            logger.debug(f"[META] '{scored.identifier}' has no matching episode file")
            return []
        return [build_stream(scored.identifier, chosen, EPISODE_STREAM_LABEL)]

    # --- Collection fallback ---

    async def _discover_collections(
        self, request: ResolveRequest, state: RunState
    ) -> list[Candidate]:
        s = self.settings
        found: list[Candidate] = []
        seen: set[str] = set()
        for query in build_collection_queries(
            request.terms.all(), max_terms=s.max_query_terms
        ):
            if state.expired():
                break
            result = await attempt(
                self.search_gateway.search(
                    query,
                    media_type=ARCHIVE_COLLECTION_MEDIATYPE,
                    rows=s.episode_search_rows,
                ),
                f"collection query {query!r}",
            )
            if not result.ok or not result.value:
                continue
            for candidate in result.value:
                if candidate.identifier not in seen:
                    seen.add(candidate.identifier)
                    found.append(replace(candidate, position=len(found)))

        matched: list[tuple[int, Candidate]] = []
        for candidate in found:
            ratio = max(
                (
                    fuzz.token_set_ratio(normalize(candidate.title), normalize(term))
                    for term in request.terms.titles
                ),
                default=0,
            )
            if ratio >= s.collection_match_threshold:
                matched.append((ratio, candidate))

        matched.sort(key=lambda pair: (-pair[0], pair[1].position))
        collections = [c for _, c in matched[: s.max_fallback_collections]]
        logger.info(
            f"[SEARCH] {len(found)} collections found, "
            f"{len(collections)} kept: {[c.identifier for c in collections]}"
        )
        return collections

    # --- Positional guess ---

    async def _positional_guess_phase(
        self, request: ResolveRequest, state: RunState
    ) -> None:
        s = self.settings
        context = self._episode_context(request)
        if context is None:
            return
        pool = sorted(
            (
                scored
                for scored in state.shortlisted.values()
                if scored.score >= s.title_score_relaxed
            ),
            key=lambda scored: scored.score,
            reverse=True,
        )
        logger.info(f"[PHASE] Positional guess over {len(pool)} confident candidates")

        for scored in pool:
            if len(state.streams) >= s.max_streams_per_title or state.expired():
                break
            result = await attempt(
                self.metadata_fetcher.fetch_metadata(scored.identifier),
                f"metadata for '{scored.identifier}'",
            )
            if not result.ok or result.value is None:
                continue
            metadata = result.value
            if not is_permissive(
                scored.candidate, metadata, s.require_permissive_license_only
            ):
                continue
            videos = video_files(metadata.files, s.min_feature_size_bytes)
            guess = positional_guess(
                videos,
                context,
                request.runtime_minutes,
                s.positional_guess_max_variance_minutes,
            )
            if guess is not None:
                logger.info(
                    f"[PHASE] Positional guess '{guess.name}' in '{scored.identifier}'"
                )
                state.streams.append(
                    build_stream(scored.identifier, guess, POSITIONAL_STREAM_LABEL)
                )


def build_resolver(
    settings: ResolverSettings | None = None, cache: TTLCache | None = None
) -> Resolver:
    """Wires the resolver to the real providers sharing one cache."""
    settings = settings or load_settings()
    cache = cache if cache is not None else TTLCache()
    timeout = settings.request_timeout_seconds
    archive = ArchiveClient(cache, timeout=timeout)
    return Resolver(
        settings=settings,
        search_gateway=archive,
        metadata_fetcher=archive,
        title_provider=CinemetaProvider(cache, timeout=timeout),
        alternate_titles=TmdbProvider(cache, settings.tmdb_api_key, timeout=timeout),
        episode_guide=WikipediaEpisodeGuide(cache),
    )


async def resolve(
    media_type: str,
    canonical_id: str,
    season: int | None = None,
    episode: int | None = None,
    *,
    resolver: Resolver | None = None,
) -> dict[str, Any]:
    """
    Entry point for the transport layer.

    Long-lived callers should build one ``Resolver`` and pass it in so the
    provider cache survives across requests.
    """
    resolver = resolver or build_resolver()
    return await resolver.resolve(media_type, canonical_id, season, episode)

# archive_streams/config.py

import configparser
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

# --- Constants ---
ARCHIVE_DOWNLOAD_BASE = "https://archive.org/download"
VIDEO_EXTENSIONS = ("mp4", "mkv", "webm", "mpg", "mpeg", "mov", "avi", "m4v")
STREAM_LABEL = "Internet Archive"
EPISODE_STREAM_LABEL = "Internet Archive (Episode)"
POSITIONAL_STREAM_LABEL = "Internet Archive (Episode, positional guess)"
DEFAULT_CONFIG_PATH = "config.ini"
PROVIDER_CONFIG_PATH = Path(__file__).resolve().parent / "configs" / "providers.yaml"

# Setup basic logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Cache for provider configurations to avoid repeated disk reads.
_provider_config_cache: dict[Path, dict[str, Any]] = {}


@dataclass(frozen=True)
class ResolverSettings:
    """Tunable knobs for the resolver.

    The score thresholds and tolerances are empirically tuned; each one can be
    overridden independently from ``config.ini``.
    """

    max_streams_per_title: int = 5
    require_permissive_license_only: bool = False
    strict_mode: bool = False
    min_feature_size_mb: float = 5.0
    title_score_strict: float = 0.9
    title_score_relaxed: float = 0.8
    collection_scope_list: tuple[str, ...] = ("feature_films", "classic_tv")
    allow_positional_guess: bool = False
    positional_guess_max_variance_minutes: float = 10.0
    min_movie_runtime_minutes: float = 40.0
    runtime_tolerance_minutes: float = 25.0
    max_query_terms: int = 6
    year_range_before: int = 1
    year_range_after: int = 2
    popularity_floor: int = 10
    movie_shortlist_size: int = 30
    episode_shortlist_size: int = 40
    movie_candidate_ceiling: int = 150
    episode_candidate_ceiling: int = 180
    movie_search_rows: int = 60
    episode_search_rows: int = 80
    max_queries_per_phase: int = 60
    metadata_concurrency: int = 6
    collection_match_threshold: int = 80
    max_fallback_collections: int = 3
    request_timeout_seconds: float = 15.0
    deadline_seconds: float = 25.0
    use_wikipedia_episode_guide: bool = True
    tmdb_api_key: str | None = field(default=None, repr=False)

    @property
    def min_feature_size_bytes(self) -> int:
        # Archive sizes are decimal megabytes.
        return int(self.min_feature_size_mb * 1_000_000)


def load_settings(config_path: str = DEFAULT_CONFIG_PATH) -> ResolverSettings:
    """
    Reads resolver settings from the optional ``[resolver]`` section of
    ``config.ini`` and applies the environment overrides understood by the
    deployed addon (``MAX_STREAMS``, ``REQUIRE_PD_OR_CC``, ``TMDB_KEY``).

    Every key is optional. A missing file simply yields the defaults.
    """
    settings = ResolverSettings()

    if os.path.exists(config_path):
        parser = configparser.ConfigParser()
        with open(config_path, encoding="utf-8") as f:
            parser.read_string(f.read())
        if parser.has_section("resolver"):
            settings = _apply_section(settings, parser["resolver"])
            logger.info(f"[CONFIG] Resolver settings loaded from '{config_path}'.")
    else:
        logger.info(
            f"[CONFIG] No '{config_path}' found. Using default resolver settings."
        )

    return _apply_environment(settings, os.environ)


def _apply_section(
    settings: ResolverSettings, section: configparser.SectionProxy
) -> ResolverSettings:
    """Coerces each recognised key of the section to its field type."""
    overrides: dict[str, Any] = {}
    for f in fields(ResolverSettings):
        if f.name not in section:
            continue
        raw = section.get(f.name, fallback="").strip()
        try:
            overrides[f.name] = _coerce(f.name, raw, getattr(settings, f.name))
        except ValueError as e:
            raise ValueError(f"Invalid value for '{f.name}' in [resolver]: {e}")

    unknown = set(section.keys()) - {f.name for f in fields(ResolverSettings)}
    for key in sorted(unknown):
        logger.warning(f"[CONFIG] Ignoring unknown [resolver] key '{key}'.")

    return replace(settings, **overrides)


def _coerce(name: str, raw: str, current: Any) -> Any:
    if name == "tmdb_api_key":
        return raw or None
    if isinstance(current, bool):
        lowered = raw.lower()
        if lowered in configparser.ConfigParser.BOOLEAN_STATES:
            return configparser.ConfigParser.BOOLEAN_STATES[lowered]
        raise ValueError(f"expected a boolean, got '{raw}'")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, tuple):
        return tuple(item.strip() for item in raw.split(",") if item.strip())
    return raw


def _apply_environment(
    settings: ResolverSettings, environ: Any
) -> ResolverSettings:
    overrides: dict[str, Any] = {}

    max_streams = environ.get("MAX_STREAMS")
    if max_streams:
        try:
            overrides["max_streams_per_title"] = int(max_streams)
        except ValueError:
            raise ValueError(f"Invalid MAX_STREAMS value: '{max_streams}'")

    require_pd = environ.get("REQUIRE_PD_OR_CC")
    if require_pd:
        overrides["require_permissive_license_only"] = require_pd.strip() == "true"

    tmdb_key = environ.get("TMDB_KEY")
    if tmdb_key:
        overrides["tmdb_api_key"] = tmdb_key.strip()

    if overrides:
        logger.info(
            f"[CONFIG] Applied environment overrides: {', '.join(sorted(overrides))}"
        )
    return replace(settings, **overrides)


def load_provider_config(config_path: Path = PROVIDER_CONFIG_PATH) -> dict[str, Any]:
    """Load and minimally validate the YAML provider configuration.

    Configuration files are cached in-memory after the first load, so later
    calls with the same ``config_path`` return the cached data.
    """
    resolved_path = config_path.resolve()
    cached = _provider_config_cache.get(resolved_path)
    if cached is not None:
        return cached

    if not resolved_path.exists():
        raise FileNotFoundError(f"Provider config not found: {resolved_path}")

    with resolved_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    required = {"user_agent", "archive", "cinemeta", "tmdb", "cache_ttl_seconds"}
    missing = required - data.keys()
    if missing:
        raise ValueError(f"Config missing keys: {', '.join(sorted(missing))}")

    _provider_config_cache[resolved_path] = data
    return data

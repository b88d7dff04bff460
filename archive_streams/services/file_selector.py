# archive_streams/services/file_selector.py

import math
import re
import urllib.parse
from collections.abc import Iterable, Sequence

from ..config import (
    ARCHIVE_DOWNLOAD_BASE,
    VIDEO_EXTENSIONS,
    ResolverSettings,
    logger,
)
from ..utils import format_megabytes
from .media_data import FileRecord, Stream

_VIDEO_FORMAT_PATTERN = re.compile(
    r"h.?264|mpeg4|matroska|webm|quicktime|mpeg video|mp4|xvid|h.?265|hevc"
)
_SAMPLE_NAME_PATTERN = re.compile(r"sample|trailer|clip|preview", re.IGNORECASE)
_SAMPLE_FORMAT_PATTERN = re.compile(r"trailer|clip", re.IGNORECASE)

_CONTAINER_WEIGHTS = {".mp4": 3, ".mkv": 2, ".webm": 1}
_RESOLUTION_WEIGHTS = (
    (re.compile(r"2160|4k|3840x2160", re.IGNORECASE), 4),
    (re.compile(r"1440|2560x1440", re.IGNORECASE), 3),
    (re.compile(r"1080|1920x1080", re.IGNORECASE), 2),
    (re.compile(r"720|1280x720", re.IGNORECASE), 1),
)

_RESOLUTION_LABELS = (
    ("2160p", re.compile(r"\b(?:2160p|4k|3840x2160)\b")),
    ("1440p", re.compile(r"\b(?:1440p|2560x1440)\b")),
    ("1080p", re.compile(r"\b(?:1080p|1920x1080)\b")),
    ("720p", re.compile(r"\b(?:720p|1280x720)\b")),
    ("480p", re.compile(r"\b(?:480p|640x480|854x480)\b")),
    ("360p", re.compile(r"\b(?:360p|640x360|480x360)\b")),
)
_CODEC_LABELS = (
    ("H.265/HEVC", re.compile(r"hevc|h.?265|x265")),
    ("H.264/AVC", re.compile(r"h.?264|x264|avc")),
    ("MPEG-2", re.compile(r"mpeg-?2")),
    ("MPEG-4", re.compile(r"mpeg-?4")),
    ("VP9", re.compile(r"vp9")),
    ("WebM", re.compile(r"webm")),
)
_AUDIO_LABELS = (
    ("EAC3", re.compile(r"dd\+|eac-?3")),
    ("AC3", re.compile(r"\bdd\b|ac-?3")),
    ("AAC", re.compile(r"aac")),
    ("Opus", re.compile(r"opus")),
    ("MP3", re.compile(r"mp3")),
)


def _extension(name: str) -> str:
    _, dot, ext = name.lower().rpartition(".")
    return ext if dot else ""


def is_video_file(file: FileRecord, min_size_bytes: int) -> bool:
    """
    True for full-length video candidates: a known video container or format,
    not a sample/trailer/clip/preview, and larger than ``min_size_bytes``.
    """
    fmt = (file.format or "").lower()
    is_video = _extension(file.name) in VIDEO_EXTENSIONS or bool(
        _VIDEO_FORMAT_PATTERN.search(fmt)
    )
    is_sample = bool(_SAMPLE_NAME_PATTERN.search(file.name or "")) or bool(
        _SAMPLE_FORMAT_PATTERN.search(fmt)
    )
    return is_video and not is_sample and file.size_bytes > min_size_bytes


def video_files(files: Iterable[FileRecord], min_size_bytes: int) -> list[FileRecord]:
    return [f for f in files if is_video_file(f, min_size_bytes)]


def file_weight(file: FileRecord) -> float:
    """Ordering heuristic only; never surfaces in labels."""
    text = f"{file.name} {file.format or ''}"
    weight = 0.0
    for suffix, value in _CONTAINER_WEIGHTS.items():
        if file.name.lower().endswith(suffix):
            weight += value
            break
    for pattern, value in _RESOLUTION_WEIGHTS:
        if pattern.search(text):
            weight += value
    weight += math.log10(max(file.size_bytes, 1) + 1)
    return weight


def rank_video_files(
    files: Iterable[FileRecord], min_size_bytes: int
) -> list[FileRecord]:
    return sorted(video_files(files, min_size_bytes), key=file_weight, reverse=True)


def select_movie_files(
    files: Sequence[FileRecord],
    candidate_score: float,
    expected_runtime_minutes: int | None,
    settings: ResolverSettings,
) -> list[FileRecord]:
    """
    Ranked feature-length files from one candidate.

    Files shorter than the minimum runtime are treated as shorts and dropped.
    When the expected runtime is known, a file deviating by more than the
    tolerance survives only on a strict-threshold title score, and never in
    strict mode. Unknown durations pass the duration gates.
    """
    selected: list[FileRecord] = []
    min_seconds = settings.min_movie_runtime_minutes * 60
    for file in rank_video_files(files, settings.min_feature_size_bytes):
        seconds = file.duration_seconds
        if seconds is not None and seconds < min_seconds:
            logger.debug(f"[FILES] Skipping short file '{file.name}' ({seconds}s)")
            continue
        if expected_runtime_minutes and seconds is not None:
            deviation = abs(seconds / 60 - expected_runtime_minutes)
            if deviation > settings.runtime_tolerance_minutes:
                if settings.strict_mode or candidate_score < settings.title_score_strict:
                    logger.debug(
                        f"[FILES] Skipping '{file.name}': runtime off by "
                        f"{deviation:.0f} min (score {candidate_score:.2f})"
                    )
                    continue
        selected.append(file)
    return selected


def _first_label(
    text: str, labels: tuple[tuple[str, re.Pattern[str]], ...]
) -> str | None:
    for label, pattern in labels:
        if pattern.search(text):
            return label
    return None


def resolution_label(file: FileRecord) -> str | None:
    """Resolution backed by the file's own height, or by its name/format."""
    if file.height:
        for label in ("2160p", "1440p", "1080p", "720p", "480p", "360p"):
            if file.height >= int(label[:-1]):
                return label
        return f"{file.height}p"
    return _first_label(f"{file.name} {file.format or ''}".lower(), _RESOLUTION_LABELS)


def describe_file(file: FileRecord) -> str:
    """Human-readable stream title, e.g. "1080p • H.264/AVC • AAC • 700MB"."""
    text = f"{file.name} {file.format or ''}".lower()
    parts = [
        resolution_label(file),
        _first_label(text, _CODEC_LABELS) or "Video",
        _first_label(text, _AUDIO_LABELS),
        format_megabytes(file.size_bytes),
    ]
    return " • ".join(p for p in parts if p)


def download_url(identifier: str, file_name: str) -> str:
    quoted_id = urllib.parse.quote(identifier, safe="")
    quoted_name = "/".join(
        urllib.parse.quote(segment, safe="") for segment in file_name.split("/")
    )
    return f"{ARCHIVE_DOWNLOAD_BASE}/{quoted_id}/{quoted_name}"


def build_stream(identifier: str, file: FileRecord, label: str) -> Stream:
    return Stream(
        label=label,
        title=describe_file(file),
        url=download_url(identifier, file.name),
        group_key=identifier,
    )

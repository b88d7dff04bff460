import pytest

from archive_streams.config import ResolverSettings
from archive_streams.services.file_selector import (
    build_stream,
    describe_file,
    download_url,
    is_video_file,
    rank_video_files,
    resolution_label,
    select_movie_files,
)
from archive_streams.services.media_data import FileRecord

MB = 1_000_000


def _file(name, size=700 * MB, **kwargs):
    return FileRecord(name=name, size_bytes=size, **kwargs)


@pytest.mark.parametrize(
    "file, expected",
    [
        (_file("nosferatu.mp4"), True),
        (_file("nosferatu.ogv", format="h.264"), True),
        (_file("nosferatu_trailer.mp4"), False),
        (_file("nosferatu-sample.mkv"), False),
        (_file("nosferatu.mp4", format="Trailer"), False),
        (_file("nosferatu.mp4", size=5 * MB), False),
        (_file("poster.jpg", format="JPEG"), False),
    ],
)
def test_is_video_file(file, expected):
    assert is_video_file(file, 5 * MB) is expected


def test_rank_video_files_prefers_container_and_resolution():
    files = [
        _file("movie.avi"),
        _file("movie_720p.mkv"),
        _file("movie_1080p.mp4"),
        _file("cover.png", format="PNG"),
    ]

    ranked = rank_video_files(files, 5 * MB)

    assert [f.name for f in ranked] == ["movie_1080p.mp4", "movie_720p.mkv", "movie.avi"]


def test_short_files_are_never_selected_regardless_of_score():
    settings = ResolverSettings()
    files = [_file("short.mp4", duration_seconds=300)]

    assert select_movie_files(files, 5.0, None, settings) == []
    assert select_movie_files(files, 5.0, 5, settings) == []


def test_runtime_mismatch_needs_strict_score():
    settings = ResolverSettings()
    files = [_file("long.mp4", duration_seconds=180 * 60)]

    assert select_movie_files(files, 0.85, 90, settings) == []
    assert select_movie_files(files, 0.95, 90, settings) == files


def test_strict_mode_rejects_runtime_mismatch_outright():
    settings = ResolverSettings(strict_mode=True)
    files = [_file("long.mp4", duration_seconds=180 * 60)]

    assert select_movie_files(files, 1.5, 90, settings) == []


def test_unknown_duration_passes_gates():
    settings = ResolverSettings()
    files = [_file("unknown.mp4")]

    assert select_movie_files(files, 0.1, 90, settings) == files


def test_resolution_label_never_invents_a_value():
    assert resolution_label(_file("movie.mp4", height=1080)) == "1080p"
    assert resolution_label(_file("movie.mp4", height=576)) == "480p"
    assert resolution_label(_file("movie.720p.mp4")) == "720p"
    assert resolution_label(_file("movie.mp4")) is None


def test_describe_file():
    file = _file("Movie.1080p.x264.AAC.mp4", size=700 * MB)
    assert describe_file(file) == "1080p • H.264/AVC • AAC • 700MB"
    assert describe_file(_file("movie.avi", size=350 * MB)) == "Video • 350MB"


def test_download_url_quotes_segments_and_keeps_slashes():
    url = download_url("my item", "Season 1/Ep #1.mp4")
    assert url == "https://archive.org/download/my%20item/Season%201/Ep%20%231.mp4"


def test_build_stream():
    stream = build_stream("nosferatu1922", _file("nosferatu.mp4"), "Internet Archive")

    assert stream.as_payload() == {
        "name": "Internet Archive",
        "title": "Video • 700MB",
        "url": "https://archive.org/download/nosferatu1922/nosferatu.mp4",
        "behaviorHints": {"bingeGroup": "nosferatu1922"},
    }

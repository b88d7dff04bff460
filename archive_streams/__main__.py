# archive_streams/__main__.py

import argparse
import asyncio
import json
from dataclasses import replace

from archive_streams.config import DEFAULT_CONFIG_PATH, load_settings, logger
from archive_streams.workflows import build_resolver


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="archive_streams",
        description="Resolve a movie or series episode to Internet Archive streams.",
    )
    parser.add_argument("media_type", choices=("movie", "series"))
    parser.add_argument("canonical_id", help="IMDb id, e.g. tt0013442")
    parser.add_argument("--season", type=int, default=None)
    parser.add_argument("--episode", type=int, default=None)
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument(
        "--permissive-only",
        action="store_true",
        help="Only return public domain or Creative Commons items.",
    )
    parser.add_argument(
        "--positional-guess",
        action="store_true",
        help="Allow guessing an episode by its position in a season folder.",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> list[dict]:
    settings = load_settings(args.config)
    if args.permissive_only:
        settings = replace(settings, require_permissive_license_only=True)
    if args.positional_guess:
        settings = replace(settings, allow_positional_guess=True)

    resolver = build_resolver(settings)
    result = await resolver.resolve(
        args.media_type, args.canonical_id, args.season, args.episode
    )
    return [stream.as_payload() for stream in result["streams"]]


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logger.info(f"Resolving {args.media_type} '{args.canonical_id}'...")
    payloads = asyncio.run(run(args))
    print(json.dumps({"streams": payloads}, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()

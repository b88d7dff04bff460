# archive_streams/errors.py

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .config import logger

T = TypeVar("T")


class ResolverError(Exception):
    """Base class for resolver failures."""


class TransientFetchError(ResolverError):
    """A provider call failed, timed out or returned an unusable response."""

    def __init__(self, source: str, detail: str):
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail


class NotFoundError(ResolverError):
    """The request cannot be resolved (no title, no season/episode)."""


class MalformedMetadataError(ResolverError):
    """A provider payload lacks the structure the parsers expect."""


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one external call: either ``value`` or ``error``."""

    value: T | None = None
    error: ResolverError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(call: Awaitable[T], what: str) -> FetchResult[T]:
    """
    Awaits ``call`` and folds provider failures into a ``FetchResult``.

    Only ``TransientFetchError`` and ``MalformedMetadataError`` are folded;
    each one is logged with ``what`` so the skip reason stays visible.
    Programming errors propagate.
    """
    try:
        return FetchResult(value=await call)
    except TransientFetchError as e:
        logger.warning(f"[FETCH] Skipping {what}: {e}")
        return FetchResult(error=e)
    except MalformedMetadataError as e:
        logger.info(f"[FETCH] Skipping {what}: malformed payload ({e})")
        return FetchResult(error=e)

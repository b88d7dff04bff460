# archive_streams/services/fetching.py

from typing import Any

import httpx

from ..config import load_provider_config, logger
from ..errors import TransientFetchError


def default_headers() -> dict[str, str]:
    return {
        "User-Agent": load_provider_config()["user_agent"],
        "Accept": "application/json",
    }


async def fetch_json(
    url: str,
    *,
    source: str,
    params: Any = None,
    timeout: float = 15.0,
    headers: dict[str, str] | None = None,
) -> Any:
    """
    GET ``url`` and decode the JSON body.

    Every failure mode (connection errors, timeouts, HTTP error statuses,
    undecodable bodies) is raised as ``TransientFetchError`` tagged with
    ``source`` so callers can skip just the affected query or item.
    """
    logger.debug(f"[HTTP] {source}: GET {url}")
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(
                url, params=params, headers=headers or default_headers()
            )
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException as exc:
        raise TransientFetchError(source, f"timed out fetching {url}") from exc
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        raise TransientFetchError(source, f"HTTP {status} for {url}") from exc
    except httpx.HTTPError as exc:
        raise TransientFetchError(source, f"request error for {url}: {exc}") from exc
    except ValueError as exc:
        raise TransientFetchError(source, f"invalid JSON from {url}") from exc

"""GraphQL access to the Balancer subgraphs with cursor pagination."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests

from .config import settings

logger = logging.getLogger(__name__)

BATCH_SIZE = 1_000

ProcessFn = Callable[[Dict[str, Any]], Awaitable[None]]


class SubgraphError(RuntimeError):
    """Raised when a GraphQL endpoint cannot be reached or answers with errors."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


def _post(endpoint: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
    try:
        response = requests.post(
            endpoint,
            json={"query": query, "variables": variables},
            headers={"Content-Type": "application/json"},
            timeout=settings.http_timeout,
        )
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as exc:
        raise SubgraphError(endpoint, str(exc)) from exc


async def gql(
    endpoint: str, query: str, variables: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Run ``query`` against ``endpoint`` and return its ``data`` member."""
    logger.debug("running GraphQL query on %s", endpoint)
    body = await asyncio.to_thread(_post, endpoint, query, variables or {})
    data = body.get("data")
    if data is None:
        raise SubgraphError(endpoint, str(body.get("errors") or "empty response"))
    return data


def page_rows(data: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rows of a page: the first (and only) collection of the ``data`` object."""
    if not data:
        return []
    return next(iter(data.values()), None) or []


async def paginate(
    fetch_fn: Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    initial_id: str = "",
    step: int = BATCH_SIZE,
) -> int:
    """Call ``fetch_fn`` with a growing ``id_gt`` cursor until a short page.

    Returns the number of pages requested.
    """
    logger.debug("paginating from initial_id=%r step=%d", initial_id, step)
    id_value = initial_id
    pages = 0
    while True:
        data = await fetch_fn(id_value)
        pages += 1
        rows = page_rows(data)
        if len(rows) < step:
            return pages
        id_value = rows[-1]["id"]
        logger.debug("next cursor %s", id_value)


async def paginated_fetch(
    endpoint: str,
    query: str,
    process_fn: ProcessFn,
    initial_id: str = "",
    step: int = BATCH_SIZE,
) -> int:
    """Paginate ``query`` on ``endpoint``, handing every page to ``process_fn``.

    Errors are not retried here; they abort the pagination.
    """

    async def fetch_page(latest_id: str) -> Dict[str, Any]:
        data = await gql(endpoint, query, {"latestId": latest_id})
        await process_fn(data)
        return data

    return await paginate(fetch_page, initial_id, step)

"""Fetch-and-stage routines for pools, pool snapshots and gauges."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from prometheus_client import Counter
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .config import settings
from .database import GaugeTemp, Pool, PoolSnapshotTemp
from .loader import add_to_table, upsert_table
from .networks import endpoint_for, network_names
from .subgraph import gql, paginated_fetch

logger = logging.getLogger(__name__)

EXTRACTION_FAILURE_COUNTER = Counter(
    "etl_extraction_failures_total",
    "Failed extractions, by entity and network",
    ["entity", "network"],
)

VOTING_GAUGES_QUERY = """
query VeBalGetVotingList {
    veBalGetVotingList {
        chain
        id
        address
        symbol
        type
        gauge {
            address
            isKilled
            addedTimestamp
            relativeWeightCap
        }
        tokens {
            address
            logoURI
            symbol
            weight
        }
    }
}
"""

POOLS_WITHOUT_GAUGE_QUERY = """
query PoolsWherePoolType($latestId: String!) {
  pools(
    first: 1000,
    where: {
      id_gt: $latestId,
    }
  ) {
    id
    address
    symbol
    poolType
    createTime
    poolTypeVersion
    tokens {
      isExemptFromYieldProtocolFee
      address
      symbol
      weight
    }
    priceRateProviders {
      address
      token {
        address
      }
    }
  }
}
"""

POOLS_SNAPSHOTS = """
query PoolSnapshots($latestId: String!) {
  poolSnapshots(
    first: 1000,
    where: {
      id_gt: $latestId,
    }
  ) {
    id
    pool {
      id
      protocolYieldFeeCache
      protocolSwapFeeCache
    }
    amounts
    totalShares
    swapVolume
    protocolFee
    swapFees
    liquidity
    timestamp
  }
}
"""


async def process_pools(session: Session, data: Dict[str, Any], network: str) -> None:
    logger.debug("processing pools for network %s", network)
    pools = data.get("pools") or []
    upsert_table(
        session,
        Pool,
        [{"external_id": pool["id"], "raw_data": {**pool, "network": network}} for pool in pools],
        ["external_id"],
        ["raw_data"],
    )


async def process_pool_snapshots(session: Session, data: Dict[str, Any], network: str) -> None:
    logger.debug("processing pool snapshots for network %s", network)
    snapshots = data.get("poolSnapshots") or []
    add_to_table(
        session,
        PoolSnapshotTemp,
        [
            {"external_id": snapshot["id"], "raw_data": {**snapshot, "network": network}}
            for snapshot in snapshots
        ],
    )


async def extract_pools_for_network(session: Session, network: str, endpoint: str) -> int:
    return await paginated_fetch(
        endpoint,
        POOLS_WITHOUT_GAUGE_QUERY,
        lambda data: process_pools(session, data, network),
    )


async def extract_pool_snapshots_for_network(
    session: Session, network: str, endpoint: str
) -> int:
    return await paginated_fetch(
        endpoint,
        POOLS_SNAPSHOTS,
        lambda data: process_pool_snapshots(session, data, network),
    )


async def extract_for_networks(
    entity: str,
    extract_fn: Callable[[str, str], Awaitable[Any]],
    networks: Optional[List[str]] = None,
) -> Dict[str, BaseException]:
    """Run ``extract_fn(network, endpoint)`` for every network concurrently.

    A failing network does not stop the others. Returns the failures by
    network name.
    """
    networks = networks if networks is not None else network_names()
    results = await asyncio.gather(
        *(extract_fn(network, endpoint_for(network)) for network in networks),
        return_exceptions=True,
    )
    failures: Dict[str, BaseException] = {}
    for network, result in zip(networks, results):
        if isinstance(result, BaseException):
            EXTRACTION_FAILURE_COUNTER.labels(entity=entity, network=network).inc()
            logger.error("%s extraction failed for network=%s: %s", entity, network, result)
            failures[network] = result
    return failures


async def extract_gauges(session: Session, endpoint: Optional[str] = None) -> int:
    """Replace the staged voting list with the current one. Returns its size."""
    data = await gql(endpoint or settings.balancer_api_url, VOTING_GAUGES_QUERY)
    voting_list = data.get("veBalGetVotingList") or []
    rows = [
        {
            "address": item["gauge"]["address"],
            "pool_external_id": item["id"],
            "raw_data": item,
        }
        for item in voting_list
        if item.get("gauge")
    ]
    session.execute(delete(GaugeTemp))
    session.commit()
    add_to_table(session, GaugeTemp, rows)
    logger.info("staged %d voting gauges", len(rows))
    return len(rows)

"""Filtering, sorting and paging of pool statistics for the API."""

import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from .schemas import FilterParams, PoolStatsData, PoolStatsResults

logger = logging.getLogger(__name__)

Condition = Callable[[PoolStatsData, Any], bool]

CONDITIONS: Dict[str, Condition] = {
    "network": lambda pool, value: pool.network == value,
    "min_apr": lambda pool, value: pool.apr.total >= value,
    "max_apr": lambda pool, value: pool.apr.total <= value,
    "min_voting_share": lambda pool, value: pool.voting_share * 100 >= value,
    "max_voting_share": lambda pool, value: pool.voting_share * 100 <= value,
    "tokens": lambda pool, value: any(token.symbol in value for token in pool.tokens),
    "types": lambda pool, value: pool.pool_type in value,
    "min_tvl": lambda pool, value: pool.tvl >= value,
    "max_tvl": lambda pool, value: pool.tvl <= value,
}

SORT_KEYS: Dict[str, Callable[[PoolStatsData], Any]] = {
    "apr": lambda pool: pool.apr.total,
    "tvl": lambda pool: pool.tvl,
    "volume": lambda pool: pool.volume,
    "votingShare": lambda pool: pool.voting_share,
    "balPriceUSD": lambda pool: pool.bal_price_usd,
    "collectedFeesUSD": lambda pool: pool.collected_fees_usd,
    "symbol": lambda pool: pool.symbol,
    "network": lambda pool: pool.network,
    "type": lambda pool: pool.pool_type,
    "poolId": lambda pool: pool.pool_id,
}


def should_include_pool(pool: PoolStatsData, params: FilterParams) -> bool:
    """True when ``pool`` satisfies every filter set in ``params``."""
    for name, condition in CONDITIONS.items():
        value = getattr(params, name)
        if value is not None and not condition(pool, value):
            return False
    return True


def filter_pool_stats(pool_stats: PoolStatsResults, query: Mapping[str, Any]) -> PoolStatsResults:
    """Apply the filters found in ``query`` to every day and to the pool averages.

    Unparseable filters are logged and the input is returned unfiltered.
    """
    try:
        params = FilterParams.model_validate(dict(query))
        per_day = {
            day: [pool for pool in pools if should_include_pool(pool, params)]
            for day, pools in pool_stats.per_day.items()
        }
        pool_average = [
            pool for pool in pool_stats.average.pool_average if should_include_pool(pool, params)
        ]
    except (ValidationError, TypeError, ValueError) as exc:
        logger.warning("error filtering for params %s: %s", dict(query), exc)
        return pool_stats
    return pool_stats.model_copy(
        update={
            "per_day": per_day,
            "average": pool_stats.average.model_copy(update={"pool_average": pool_average}),
        }
    )


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def sort_pools(pools: List[PoolStatsData], sort: str = "apr", order: str = "desc") -> List[PoolStatsData]:
    """Sort by ``sort``; pools without a value go last whatever the order."""
    key = SORT_KEYS[sort]
    present = [pool for pool in pools if not _is_missing(key(pool))]
    missing = [pool for pool in pools if _is_missing(key(pool))]
    present.sort(key=key, reverse=order == "desc")
    return present + missing


def sort_and_limit(
    per_day: Mapping[str, List[PoolStatsData]],
    sort: str = "apr",
    order: str = "desc",
    offset: int = 0,
    limit: Optional[int] = None,
) -> Dict[str, List[PoolStatsData]]:
    """Sort each day's pools independently, then keep ``limit`` from ``offset``.

    A failing sort is logged and the day is returned as it was.
    """
    end = None if limit is None else offset + limit
    result = {}
    for day, pools in per_day.items():
        try:
            ordered = sort_pools(pools, sort, order)
        except (KeyError, TypeError) as exc:
            logger.warning("error sorting %s by %s: %s", day, sort, exc)
            ordered = list(pools)
        result[day] = ordered[offset:end]
    return result

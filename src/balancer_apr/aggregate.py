"""Averaging of per-day pool statistics.

Numbers are summed field by field and divided once at the end. Token yields
are merged by symbol and each is divided by the number of entries it appeared
in, since a token does not show up on every day.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from .schemas import Apr, AprBreakdown, PoolAverages, PoolStatsData, TokensApr, TokenYield


@dataclass
class TokenYieldSum:
    symbol: str
    address: Optional[str] = None
    total: float = 0.0
    occurrences: int = 0

    def average(self) -> TokenYield:
        value = self.total / self.occurrences if self.occurrences else 0.0
        return TokenYield(address=self.address, symbol=self.symbol, yield_=value)


@dataclass
class StatsAccumulator:
    count: int = 0
    apr_total: float = 0.0
    vebal: float = 0.0
    swap_fee: float = 0.0
    tokens_total: float = 0.0
    token_yields: Dict[str, TokenYieldSum] = field(default_factory=dict)
    bal_price_usd: float = 0.0
    tvl: float = 0.0
    volume: float = 0.0
    voting_share: float = 0.0
    collected_fees_usd: float = 0.0
    identity: Optional[PoolStatsData] = None

    def add(self, stats: PoolStatsData) -> None:
        self.count += 1
        self.apr_total += stats.apr.total
        self.vebal += stats.apr.breakdown.vebal
        self.swap_fee += stats.apr.breakdown.swap_fee
        self.tokens_total += stats.apr.breakdown.tokens.total
        for token in stats.apr.breakdown.tokens.breakdown:
            entry = self.token_yields.get(token.symbol)
            if entry is None:
                entry = self.token_yields[token.symbol] = TokenYieldSum(token.symbol, token.address)
            entry.total += token.yield_
            entry.occurrences += 1
        self.bal_price_usd += stats.bal_price_usd
        self.tvl += stats.tvl
        self.volume += stats.volume
        self.voting_share += stats.voting_share
        self.collected_fees_usd += stats.collected_fees_usd

    def add_pool(self, stats: PoolStatsData) -> None:
        """Like :meth:`add`, for entries that must all describe the same pool."""
        if self.identity is None:
            self.identity = stats
        else:
            for name in ("pool_id", "symbol", "network", "pool_type"):
                if getattr(self.identity, name) != getattr(stats, name):
                    raise ValueError(
                        f"cannot average {name} {getattr(self.identity, name)!r} "
                        f"with {getattr(stats, name)!r} for pool {self.identity.pool_id}"
                    )
        self.add(stats)

    def averaged_apr(self, divisor: int) -> Apr:
        return Apr(
            total=self.apr_total / divisor,
            breakdown=AprBreakdown(
                vebal=self.vebal / divisor,
                swap_fee=self.swap_fee / divisor,
                tokens=TokensApr(
                    total=self.tokens_total / divisor,
                    breakdown=[entry.average() for entry in self.token_yields.values()],
                ),
            ),
        )

    def pool_average(self, divisor: int) -> PoolStatsData:
        return self.identity.model_copy(
            update={
                "apr": self.averaged_apr(divisor),
                "bal_price_usd": self.bal_price_usd / divisor,
                "tvl": self.tvl / divisor,
                "volume": self.volume / divisor,
                "voting_share": self.voting_share / divisor,
                "collected_fees_usd": self.collected_fees_usd / divisor,
            }
        )


def compute_averages(per_day: Mapping[str, Sequence[PoolStatsData]]) -> PoolAverages:
    """Average ``per_day`` (date or bucket -> pool stats) globally and per pool.

    Global numbers are divided by the number of entries folded in; per-pool
    numbers by the number of buckets in ``per_day``.
    """
    overall = StatsAccumulator()
    per_pool: Dict[str, StatsAccumulator] = {}

    for entries in per_day.values():
        for stats in entries:
            overall.add(stats)
            per_pool.setdefault(stats.pool_id, StatsAccumulator()).add_pool(stats)

    if not overall.count:
        return PoolAverages()

    buckets = len(per_day)
    pool_average: List[PoolStatsData] = [acc.pool_average(buckets) for acc in per_pool.values()]
    return PoolAverages(
        pool_average=pool_average,
        apr=overall.averaged_apr(overall.count),
        bal_price_usd=overall.bal_price_usd / overall.count,
        tvl=overall.tvl / overall.count,
        volume=overall.volume / overall.count,
    )

"""APR formulas and their per-pool, per-day materialization."""

import bisect
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import emissions
from .database import (
    BalEmission,
    Gauge,
    GaugeSnapshot,
    Pool,
    PoolSnapshot,
    PoolToken,
    SwapFeeApr,
    TokenPrice,
    TokenRate,
    TokenYieldApr,
    VebalApr,
    VebalRound,
)
from .dates import date_to_epoch
from .loader import add_to_table
from .prices import BAL_ADDRESS

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
DEFAULT_PROTOCOL_SWAP_FEE = 0.5


def swap_fee_apr(
    swap_fees: float,
    previous_swap_fees: float,
    protocol_swap_fee_cache: Optional[float],
    liquidity: float,
) -> float:
    """Annualize one day of swap fees kept by liquidity providers.

    Parameters
    ----------
    swap_fees, previous_swap_fees: float
        Cumulative USD swap fees on the day and on the day before.
    protocol_swap_fee_cache: float or None
        Share of swap fees taken by the protocol; ``0.5`` when unknown.
    liquidity: float
        Pool liquidity in USD on the day.

    Returns
    -------
    float
        APR as a percentage, ``0.0`` for a pool without liquidity.
    """
    if not liquidity:
        return 0.0
    if protocol_swap_fee_cache is None:
        protocol_swap_fee_cache = DEFAULT_PROTOCOL_SWAP_FEE
    return (swap_fees - previous_swap_fees) * (1 - protocol_swap_fee_cache) / liquidity * 365 * 100


def vebal_apr(
    week_emission: float, relative_weight: float, bal_price_usd: float, liquidity: float
) -> float:
    """APR from BAL emissions directed to the pool's gauge, as a percentage."""
    if not liquidity:
        return 0.0
    return 52 * (week_emission * relative_weight * bal_price_usd) / liquidity * 100


def token_yield_apr(
    rate: float,
    previous_rate: float,
    share: float,
    protocol_yield_fee_cache: Optional[float],
    is_exempt: bool = False,
) -> float:
    """APR a pool earns from one yield-bearing token over one day.

    The token's own daily rate growth is annualized, weighted by its share of
    the pool and reduced by the protocol yield fee unless the token is exempt.
    """
    if not previous_rate:
        return 0.0
    fee = 0.0 if is_exempt or protocol_yield_fee_cache is None else protocol_yield_fee_cache
    return (rate / previous_rate - 1) * 365 * 100 * share * (1 - fee)


def token_share(pool_token: PoolToken, amounts: Optional[Sequence]) -> float:
    """Weight of a token in its pool: the configured weight, else its share of balances."""
    if pool_token.weight is not None:
        return pool_token.weight
    if not amounts or not pool_token.token_index or pool_token.token_index > len(amounts):
        return 0.0
    balances = [float(amount) for amount in amounts]
    total = sum(balances)
    if not total:
        return 0.0
    return balances[pool_token.token_index - 1] / total


def seed_bal_emission(session: Session) -> int:
    """Store the weekly BAL emission for every distinct snapshot timestamp."""
    timestamps = session.execute(select(PoolSnapshot.timestamp).distinct()).scalars().all()
    rows = []
    for timestamp in timestamps:
        if timestamp is None:
            continue
        try:
            week_emission = emissions.weekly(date_to_epoch(timestamp))
        except ValueError as exc:
            logger.debug("no emission for %s: %s", timestamp, exc)
            continue
        rows.append({"timestamp": timestamp, "week_emission": week_emission})
    return add_to_table(session, BalEmission, rows)


def _pool_ids(session: Session) -> List[str]:
    return session.execute(select(PoolSnapshot.pool_external_id).distinct()).scalars().all()


def _pool_snapshots(session: Session, pool_id: str) -> List[PoolSnapshot]:
    return session.execute(
        select(PoolSnapshot)
        .where(PoolSnapshot.pool_external_id == pool_id)
        .order_by(PoolSnapshot.timestamp)
    ).scalars().all()


def _existing_ids(session: Session, model, pool_id: str) -> set:
    return set(
        session.execute(
            select(model.external_id).where(model.pool_external_id == pool_id)
        ).scalars().all()
    )


def calculate_swap_fee_apr(session: Session) -> int:
    """Write swap-fee APR rows for every pool-day with a previous-day snapshot."""
    written = 0
    for pool_id in _pool_ids(session):
        snapshots = _pool_snapshots(session, pool_id)
        by_day = {snapshot.timestamp: snapshot for snapshot in snapshots}
        existing = _existing_ids(session, SwapFeeApr, pool_id)
        rows = []
        for snapshot in snapshots:
            previous = by_day.get(snapshot.timestamp - ONE_DAY)
            if previous is None or snapshot.external_id in existing:
                continue
            if snapshot.swap_fees is None or previous.swap_fees is None:
                continue
            rows.append(
                {
                    "external_id": snapshot.external_id,
                    "pool_external_id": pool_id,
                    "timestamp": snapshot.timestamp,
                    "collected_fees_usd": snapshot.swap_fees - previous.swap_fees,
                    "value": swap_fee_apr(
                        snapshot.swap_fees,
                        previous.swap_fees,
                        snapshot.protocol_swap_fee_cache,
                        snapshot.liquidity,
                    ),
                }
            )
        written += add_to_table(session, SwapFeeApr, rows)
    logger.info("wrote %d swap fee APR rows", written)
    return written


class RoundIndex:
    """Finds the veBAL round whose ``[start_date, end_date]`` contains a date."""

    def __init__(self, rounds: List[VebalRound]):
        self.rounds = sorted(rounds, key=lambda r: r.start_date)
        self.starts = [r.start_date for r in self.rounds]

    def round_for(self, value: datetime) -> Optional[int]:
        position = bisect.bisect_right(self.starts, value) - 1
        if position < 0:
            return None
        candidate = self.rounds[position]
        if candidate.start_date <= value <= candidate.end_date:
            return candidate.round_number
        return None


def calculate_vebal_apr(session: Session) -> int:
    """Write veBAL APR rows for pool-days with a gauge weight, BAL price and emission."""
    rounds = RoundIndex(session.execute(select(VebalRound)).scalars().all())
    prices = dict(
        session.execute(
            select(TokenPrice.timestamp, TokenPrice.price_usd).where(
                TokenPrice.token_address == BAL_ADDRESS, TokenPrice.network_slug == "ethereum"
            )
        ).all()
    )
    week_emissions = dict(
        session.execute(select(BalEmission.timestamp, BalEmission.week_emission)).all()
    )
    weights: Dict[Tuple[str, int], float] = {
        (row.gauge_address, row.round_number): row.relative_weight
        for row in session.execute(select(GaugeSnapshot)).scalars()
    }

    written = 0
    for pool_id in _pool_ids(session):
        gauges = session.execute(
            select(Gauge.address)
            .where(Gauge.pool_external_id == pool_id)
            .order_by(Gauge.is_killed, Gauge.address)
        ).scalars().all()
        if not gauges:
            continue
        existing = _existing_ids(session, VebalApr, pool_id)
        rows = []
        for snapshot in _pool_snapshots(session, pool_id):
            if snapshot.external_id in existing:
                continue
            round_number = rounds.round_for(snapshot.timestamp)
            if round_number is None:
                continue
            weight = next(
                (weights[(g, round_number)] for g in gauges if (g, round_number) in weights),
                None,
            )
            price = prices.get(snapshot.timestamp)
            emission = week_emissions.get(snapshot.timestamp)
            if weight is None or price is None or emission is None:
                continue
            rows.append(
                {
                    "external_id": snapshot.external_id,
                    "pool_external_id": pool_id,
                    "timestamp": snapshot.timestamp,
                    "value": vebal_apr(emission, weight, price, snapshot.liquidity),
                }
            )
        written += add_to_table(session, VebalApr, rows)
    logger.info("wrote %d veBAL APR rows", written)
    return written


def calculate_token_yield_apr(session: Session) -> int:
    """Write one token-yield APR row per pool, yield-bearing token and day."""
    rates: Dict[Tuple[str, str], Dict[datetime, float]] = {}
    for rate in session.execute(select(TokenRate)).scalars():
        rates.setdefault((rate.token_address, rate.network_slug), {})[rate.timestamp] = rate.rate
    if not rates:
        return 0

    written = 0
    for pool_id in _pool_ids(session):
        pool = session.execute(
            select(Pool).where(Pool.external_id == pool_id)
        ).scalar_one_or_none()
        if pool is None:
            continue
        pool_tokens = [
            pool_token
            for pool_token in session.execute(
                select(PoolToken)
                .where(PoolToken.pool_external_id == pool_id)
                .order_by(PoolToken.token_index)
            ).scalars()
            if (pool_token.token_address.lower(), pool.network_slug) in rates
        ]
        if not pool_tokens:
            continue
        existing = _existing_ids(session, TokenYieldApr, pool_id)
        rows = []
        for snapshot in _pool_snapshots(session, pool_id):
            for pool_token in pool_tokens:
                address = pool_token.token_address.lower()
                external_id = f"{snapshot.external_id}-{address}"
                token_rates = rates[(address, pool.network_slug)]
                rate = token_rates.get(snapshot.timestamp)
                previous_rate = token_rates.get(snapshot.timestamp - ONE_DAY)
                if external_id in existing or rate is None or previous_rate is None:
                    continue
                rows.append(
                    {
                        "external_id": external_id,
                        "pool_external_id": pool_id,
                        "token_address": address,
                        "timestamp": snapshot.timestamp,
                        "value": token_yield_apr(
                            rate,
                            previous_rate,
                            token_share(pool_token, snapshot.amounts),
                            snapshot.protocol_yield_fee_cache,
                            bool(pool_token.is_exempt_from_yield_protocol_fee),
                        ),
                    }
                )
        written += add_to_table(session, TokenYieldApr, rows)
    logger.info("wrote %d token yield APR rows", written)
    return written


def calculate_apr(session: Session) -> Dict[str, int]:
    logger.debug("seeding fee APR")
    swap_fee = calculate_swap_fee_apr(session)
    logger.debug("seeding veBAL APR")
    vebal = calculate_vebal_apr(session)
    logger.debug("seeding token yield APR")
    token_yield = calculate_token_yield_apr(session)
    return {"swap_fee": swap_fee, "vebal": vebal, "token_yield": token_yield}

"""Service layer assembling per-day pool statistics from the APR tables."""

import logging
import time
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from .aggregate import compute_averages
from .apr_calc import RoundIndex
from .config import settings
from .database import (
    Gauge,
    GaugeSnapshot,
    Pool,
    PoolSnapshot,
    PoolToken,
    SwapFeeApr,
    Token,
    TokenPrice,
    TokenYieldApr,
    VebalApr,
    VebalRound,
)
from .dates import format_date_to_mmddyyyy, generate_date_range
from .prices import BAL_ADDRESS
from .rounds import get_round
from .schemas import Apr, AprBreakdown, PoolStatsData, PoolStatsResults, TokenInfo, TokensApr, TokenYield

logger = logging.getLogger(__name__)

T = TypeVar("T")

ONE_DAY = timedelta(days=1)


class UnknownRoundError(ValueError):
    pass


def with_retry(
    fn: Callable[[], T],
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> Optional[T]:
    """Call ``fn`` up to ``attempts`` times, sleeping ``delay`` seconds in between.

    Returns ``None`` once every attempt failed.
    """
    if attempts is None:
        attempts = settings.pool_stats_max_retries
    delay = settings.pool_stats_retry_delay if delay is None else delay
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            logger.error("attempt %d/%d failed: %s", attempt, attempts, exc)
            if on_error is not None:
                on_error(exc)
            if attempt < attempts:
                time.sleep(delay)
    logger.error("max retries reached, giving up")
    return None


def resolve_range(
    session: Session,
    start_at: Optional[date] = None,
    end_at: Optional[date] = None,
    round_id: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    """First and last day covered by a request, as midnight datetimes."""
    if round_id is not None:
        vebal_round = get_round(session, round_id)
        if vebal_round is None:
            raise UnknownRoundError(f"unknown roundId {round_id}")
        return vebal_round.start_date, vebal_round.start_date + timedelta(days=6)
    return datetime.combine(start_at, datetime.min.time()), datetime.combine(end_at, datetime.min.time())


class StatsContext:
    """Lookups shared by every pool of one request."""

    def __init__(self, session: Session, start: datetime, end: datetime):
        self.start = start
        self.end = end
        self.rounds = RoundIndex(session.execute(select(VebalRound)).scalars().all())
        self.bal_prices: Dict[datetime, float] = dict(
            session.execute(
                select(TokenPrice.timestamp, TokenPrice.price_usd).where(
                    TokenPrice.token_address == BAL_ADDRESS,
                    TokenPrice.timestamp.between(start, end),
                )
            ).all()
        )


def pool_stats_for_pool(
    session: Session, pool: Pool, context: StatsContext
) -> List[Tuple[datetime, PoolStatsData]]:
    """Build one :class:`PoolStatsData` per day of ``context`` the pool has a snapshot on."""
    pool_id = pool.external_id
    snapshots = session.execute(
        select(PoolSnapshot)
        .where(
            PoolSnapshot.pool_external_id == pool_id,
            PoolSnapshot.timestamp.between(context.start - ONE_DAY, context.end),
        )
        .order_by(PoolSnapshot.timestamp)
    ).scalars().all()
    by_day = {snapshot.timestamp: snapshot for snapshot in snapshots}

    in_range = (context.start, context.end)
    swap_fees = {
        row.timestamp: row
        for row in session.execute(
            select(SwapFeeApr).where(
                SwapFeeApr.pool_external_id == pool_id, SwapFeeApr.timestamp.between(*in_range)
            )
        ).scalars()
    }
    vebal = dict(
        session.execute(
            select(VebalApr.timestamp, VebalApr.value).where(
                VebalApr.pool_external_id == pool_id, VebalApr.timestamp.between(*in_range)
            )
        ).all()
    )
    token_yields: Dict[datetime, List[Tuple[str, float]]] = defaultdict(list)
    for row in session.execute(
        select(TokenYieldApr).where(
            TokenYieldApr.pool_external_id == pool_id, TokenYieldApr.timestamp.between(*in_range)
        )
    ).scalars():
        token_yields[row.timestamp].append((row.token_address, row.value))

    token_rows = session.execute(
        select(PoolToken.token_address, Token.symbol, PoolToken.weight)
        .outerjoin(
            Token,
            (Token.address == PoolToken.token_address)
            & (Token.network_slug == PoolToken.network_slug),
        )
        .where(PoolToken.pool_external_id == pool_id)
        .order_by(PoolToken.token_index)
    ).all()
    tokens = [TokenInfo(address=row[0], symbol=row[1], weight=row[2]) for row in token_rows]
    symbols = {row[0].lower(): row[1] for row in token_rows}

    gauges = session.execute(
        select(Gauge.address).where(Gauge.pool_external_id == pool_id).order_by(Gauge.is_killed)
    ).scalars().all()
    weights: Dict[Tuple[str, int], float] = {}
    if gauges:
        for row in session.execute(
            select(GaugeSnapshot).where(GaugeSnapshot.gauge_address.in_(gauges))
        ).scalars():
            weights[(row.gauge_address, row.round_number)] = row.relative_weight

    def voting_share(round_number: Optional[int]) -> float:
        return next(
            (weights[(g, round_number)] for g in gauges if (g, round_number) in weights), 0.0
        )

    result = []
    for snapshot in snapshots:
        day = snapshot.timestamp
        if day < context.start:
            continue
        previous = by_day.get(day - ONE_DAY)
        volume = 0.0
        if previous is not None and snapshot.swap_volume is not None and previous.swap_volume is not None:
            volume = snapshot.swap_volume - previous.swap_volume
        swap_fee_row = swap_fees.get(day)
        breakdown = [
            TokenYield(address=address, symbol=symbols.get(address, address), yield_=value or 0.0)
            for address, value in token_yields.get(day, [])
        ]
        tokens_total = sum(token.yield_ for token in breakdown)
        swap_fee = 0.0
        collected_fees = 0.0
        if swap_fee_row is not None:
            swap_fee = swap_fee_row.value or 0.0
            collected_fees = swap_fee_row.collected_fees_usd or 0.0
        vebal_value = vebal.get(day) or 0.0
        round_number = context.rounds.round_for(day)
        result.append(
            (
                day,
                PoolStatsData(
                    pool_id=pool_id,
                    symbol=pool.symbol,
                    network=pool.network_slug,
                    pool_type=pool.pool_type,
                    tokens=tokens,
                    apr=Apr(
                        total=swap_fee + vebal_value + tokens_total,
                        breakdown=AprBreakdown(
                            vebal=vebal_value,
                            swap_fee=swap_fee,
                            tokens=TokensApr(total=tokens_total, breakdown=breakdown),
                        ),
                    ),
                    bal_price_usd=context.bal_prices.get(day, 0.0),
                    tvl=snapshot.liquidity or 0.0,
                    volume=volume,
                    voting_share=voting_share(round_number) or 0.0,
                    collected_fees_usd=collected_fees,
                ),
            )
        )
    return result


def get_pool_stats(
    session: Session, start: datetime, end: datetime, pool_id: Optional[str] = None
) -> PoolStatsResults:
    """Per-day statistics of every pool (or of ``pool_id``) between ``start`` and ``end``.

    Pools whose computation keeps failing are left out.
    """
    logger.info("computing pool stats start=%s end=%s pool=%s", start, end, pool_id)
    query = select(Pool).where(
        Pool.external_id.in_(
            select(PoolSnapshot.pool_external_id).where(PoolSnapshot.timestamp.between(start, end))
        )
    )
    if pool_id:
        query = query.where(Pool.external_id == pool_id)
    pools = session.execute(query.order_by(Pool.external_id)).scalars().all()
    context = StatsContext(session, start, end)

    by_day: Dict[datetime, List[PoolStatsData]] = defaultdict(list)
    for pool in pools:
        stats = with_retry(
            lambda: pool_stats_for_pool(session, pool, context),
            on_error=lambda exc: session.rollback(),
        )
        if stats is None:
            logger.warning("no data for pool %s", pool.external_id)
            continue
        for day, pool_stats in stats:
            by_day[day].append(pool_stats)

    per_day = {
        format_date_to_mmddyyyy(day): by_day[day]
        for day in generate_date_range(start, end)
        if by_day.get(day)
    }
    return PoolStatsResults(per_day=per_day, average=compute_averages(per_day))


def list_rounds(session: Session) -> List[VebalRound]:
    return session.execute(select(VebalRound).order_by(VebalRound.round_number)).scalars().all()

"""Contract reads on Ethereum mainnet: gauge relative weights and token rates."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.orm import Session
from web3 import Web3

from .cache import MISSING, TTLCache
from .config import settings
from .database import Gauge, GaugeSnapshot, PoolSnapshot, PoolToken, TokenRate, VebalRound
from .dates import date_to_epoch, epoch_to_date, utc_today
from .loader import add_to_table, chunks

logger = logging.getLogger(__name__)

WEIGHT_DECIMALS = 10**18

GAUGE_CONTROLLER_ABI = [
    {
        "name": "gauge_relative_weight",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "addr", "type": "address"},
            {"name": "time", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

RATE_PROVIDER_ABI = [
    {
        "name": "getRate",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

RELATIVE_WEIGHT_FAILURE_COUNTER = Counter(
    "relative_weight_read_failures_total",
    "Failed gauge_relative_weight reads",
)


@dataclass(frozen=True)
class RelativeWeight:
    gauge_address: str
    timestamp: int
    relative_weight: float


@dataclass(frozen=True)
class RelativeWeightFailure:
    gauge_address: str
    timestamp: int
    error: str


RelativeWeightResult = Union[RelativeWeight, RelativeWeightFailure]


class OnchainReader:
    """Reads from the GaugeController and from token rate providers.

    Relative weights are cached by ``(gauge, timestamp)``.
    """

    def __init__(
        self,
        w3: Optional[Web3] = None,
        gauge_controller_address: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        batch_size: Optional[int] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        self.gauge_controller = self.w3.eth.contract(
            address=Web3.to_checksum_address(
                gauge_controller_address or settings.gauge_controller_address
            ),
            abi=GAUGE_CONTROLLER_ABI,
        )
        self.cache = cache or TTLCache(max_entries=100_000, ttl_seconds=7 * 24 * 3600)
        self.batch_size = batch_size or settings.relative_weight_batch_size

    def read_relative_weight(self, gauge_address: str, timestamp: int) -> float:
        key = ("gauge_relative_weight", gauge_address.lower(), timestamp)
        cached = self.cache.get(key)
        if cached is not MISSING:
            return cached
        raw = self.gauge_controller.functions.gauge_relative_weight(
            Web3.to_checksum_address(gauge_address), int(timestamp)
        ).call()
        weight = raw / WEIGHT_DECIMALS
        self.cache.set(key, weight)
        return weight

    async def _relative_weight(self, gauge_address: str, timestamp: int) -> RelativeWeightResult:
        try:
            weight = await asyncio.to_thread(self.read_relative_weight, gauge_address, timestamp)
        except Exception as exc:
            RELATIVE_WEIGHT_FAILURE_COUNTER.inc()
            logger.warning(
                "error fetching relative weight for gauge %s at %s: %s",
                gauge_address,
                timestamp,
                exc,
            )
            return RelativeWeightFailure(gauge_address, timestamp, str(exc))
        return RelativeWeight(gauge_address, timestamp, weight)

    async def get_pool_relative_weights(
        self, pairs: Sequence[Tuple[str, int]]
    ) -> List[RelativeWeightResult]:
        """Read relative weights for ``(gauge, unix time)`` pairs, in order.

        Each batch is read concurrently; failed reads come back as
        :class:`RelativeWeightFailure` instead of raising.
        """
        results: List[RelativeWeightResult] = []
        for batch in chunks(list(pairs), self.batch_size):
            results.extend(
                await asyncio.gather(
                    *(self._relative_weight(gauge, timestamp) for gauge, timestamp in batch)
                )
            )
        return results

    def read_rate(self, provider_address: str) -> float:
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(provider_address), abi=RATE_PROVIDER_ABI
        )
        return contract.functions.getRate().call() / WEIGHT_DECIMALS


def pending_gauge_round_pairs(session: Session) -> List[Tuple[str, datetime, int]]:
    """``(gauge, round start, round number)`` for rounds the gauge's pool has a
    snapshot on, after the gauge was added and not yet stored."""
    rows = session.execute(
        select(Gauge.address, VebalRound.start_date, VebalRound.round_number)
        .select_from(PoolSnapshot)
        .join(Gauge, Gauge.pool_external_id == PoolSnapshot.pool_external_id)
        .join(VebalRound, VebalRound.start_date == PoolSnapshot.timestamp)
        .where(PoolSnapshot.timestamp > Gauge.external_created_at)
        .distinct()
        .order_by(VebalRound.start_date)
    ).all()
    stored = set(
        session.execute(select(GaugeSnapshot.gauge_address, GaugeSnapshot.round_number)).all()
    )
    return [
        (row.address, row.start_date, row.round_number)
        for row in rows
        if (row.address, row.round_number) not in stored
    ]


async def extract_gauges_snapshot(session: Session, reader: OnchainReader) -> int:
    """Store each gauge's relative weight at the start of every round."""
    pairs = pending_gauge_round_pairs(session)
    logger.debug("fetching %d relative weight/timestamp pairs", len(pairs))
    round_numbers: Dict[Tuple[str, int], int] = {
        (gauge, date_to_epoch(start)): number for gauge, start, number in pairs
    }
    results = await reader.get_pool_relative_weights(list(round_numbers))

    rows = []
    failures = 0
    for result in results:
        if isinstance(result, RelativeWeightFailure):
            failures += 1
            continue
        rows.append(
            {
                "gauge_address": result.gauge_address,
                "timestamp": epoch_to_date(result.timestamp),
                "relative_weight": result.relative_weight,
                "round_number": round_numbers[(result.gauge_address, result.timestamp)],
            }
        )
    add_to_table(session, GaugeSnapshot, rows)
    if failures:
        logger.warning("%d relative weight reads failed", failures)
    logger.info("stored %d gauge snapshots", len(rows))
    return len(rows)


def discover_rate_providers(session: Session, network: str = "ethereum") -> Dict[str, str]:
    """Rate providers reported by the pools of ``network``, keyed ``"network:token"``."""
    rows = session.execute(
        select(PoolToken.token_address, PoolToken.rate_provider)
        .where(PoolToken.network_slug == network, PoolToken.rate_provider.isnot(None))
        .distinct()
    ).all()
    return {f"{network}:{token.lower()}": provider for token, provider in rows}


async def fetch_token_rates(
    session: Session,
    reader: OnchainReader,
    providers: Optional[Dict[str, str]] = None,
    day: Optional[datetime] = None,
) -> int:
    """Record today's rate of every yield-bearing token with a rate provider.

    ``providers`` maps ``"network:token_address"`` to a rate provider address.
    By default the providers reported by mainnet pools are read, overridden by
    ``settings.rate_providers``.
    """
    if providers is None:
        providers = {**discover_rate_providers(session), **settings.rate_providers}
    day = day or utc_today()
    rows = []
    for key, provider in providers.items():
        network, token_address = key.split(":", 1)
        try:
            rate = await asyncio.to_thread(reader.read_rate, provider)
        except Exception as exc:
            logger.warning("error reading rate of %s from %s: %s", key, provider, exc)
            continue
        rows.append(
            {
                "token_address": token_address.lower(),
                "network_slug": network,
                "timestamp": day,
                "rate": rate,
            }
        )
    add_to_table(session, TokenRate, rows)
    return len(rows)

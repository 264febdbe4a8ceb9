"""Set-based transformation of staged raw payloads into typed tables.

Every step reads the whole staged data set and writes with upserts, so any of
them can be re-run after a partial failure.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .database import Gauge, GaugeTemp, Network, Pool, PoolSnapshot, PoolSnapshotTemp, PoolToken, Token
from .dates import epoch_to_date, start_of_day
from .loader import add_to_table, upsert_table
from .networks import NETWORK_SEED, normalize_network_slug

logger = logging.getLogger(__name__)

CALENDAR_START = datetime(2021, 4, 21)
ZERO_ADDRESS = "0x" + "0" * 40


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return epoch_to_date(int(value))


def seed_networks(session: Session) -> int:
    logger.debug("seeding networks")
    now = datetime.utcnow()
    rows = [
        {"name": name, "slug": slug, "chain_id": chain_id, "created_at": now, "updated_at": now}
        for name, slug, chain_id in NETWORK_SEED
    ]
    return upsert_table(session, Network, rows, ["slug"], ["chain_id", "updated_at"])


def transform_networks(session: Session, raw_names: Iterable[Optional[str]]) -> List[str]:
    """Make sure every referenced network slug exists before rows point at it."""
    slugs = sorted({normalize_network_slug(name) for name in raw_names if name})
    now = datetime.utcnow()
    add_to_table(
        session,
        Network,
        [{"slug": slug, "created_at": now, "updated_at": now} for slug in slugs],
    )
    return slugs


def _ensure_pools(session: Session, pools: Dict[str, Optional[str]]) -> None:
    now = datetime.utcnow()
    add_to_table(
        session,
        Pool,
        [
            {"external_id": external_id, "network_slug": slug, "created_at": now}
            for external_id, slug in pools.items()
        ],
    )


def _rate_provider(address: Optional[str]) -> Optional[str]:
    if not address or address.lower() == ZERO_ADDRESS:
        return None
    return address


def transform_pool_data(session: Session) -> int:
    """Upsert typed pool columns and explode the token lists.

    Returns the number of pools transformed.
    """
    staged = session.execute(select(Pool).where(Pool.raw_data.isnot(None))).scalars().all()
    raws = [pool.raw_data for pool in staged]
    transform_networks(session, (raw.get("network") for raw in raws))

    pool_rows = []
    token_rows: Dict[tuple, Dict[str, Any]] = {}
    pool_token_rows: Dict[tuple, Dict[str, Any]] = {}
    for raw in raws:
        slug = normalize_network_slug(raw.get("network"))
        rate_providers = {
            (provider.get("token") or {}).get("address", "").lower(): provider.get("address")
            for provider in raw.get("priceRateProviders") or []
        }
        pool_rows.append(
            {
                "external_id": raw["id"],
                "address": raw.get("address"),
                "symbol": raw.get("symbol"),
                "pool_type": raw.get("poolType"),
                "pool_type_version": _to_float(raw.get("poolTypeVersion")),
                "external_created_at": _to_datetime(raw.get("createTime")),
                "network_slug": slug,
                "created_at": datetime.utcnow(),
            }
        )
        for index, token in enumerate(raw.get("tokens") or [], start=1):
            token_rows.setdefault(
                (token["address"], slug),
                {"address": token["address"], "symbol": token.get("symbol"), "network_slug": slug},
            )
            pool_token_rows.setdefault(
                (raw["id"], token["address"]),
                {
                    "pool_external_id": raw["id"],
                    "token_address": token["address"],
                    "network_slug": slug,
                    "weight": _to_float(token.get("weight")),
                    "token_index": index,
                    "is_exempt_from_yield_protocol_fee": token.get("isExemptFromYieldProtocolFee"),
                    "rate_provider": _rate_provider(rate_providers.get(token["address"].lower())),
                },
            )

    upsert_table(
        session,
        Pool,
        pool_rows,
        ["external_id"],
        ["address", "symbol", "pool_type", "pool_type_version", "external_created_at", "network_slug"],
    )
    add_to_table(session, Token, list(token_rows.values()))
    upsert_table(
        session,
        PoolToken,
        list(pool_token_rows.values()),
        ["pool_external_id", "token_address"],
        ["weight", "rate_provider"],
    )
    logger.info("transformed %d pools and %d pool tokens", len(pool_rows), len(pool_token_rows))
    return len(pool_rows)


def _fill_snapshot_columns(snapshot: PoolSnapshotTemp) -> None:
    raw = snapshot.raw_data
    pool = raw.get("pool") or {}
    snapshot.external_id = raw["id"]
    snapshot.pool_external_id = pool.get("id")
    snapshot.timestamp = _to_datetime(raw.get("timestamp"))
    snapshot.amounts = raw.get("amounts")
    snapshot.total_shares = _to_float(raw.get("totalShares"))
    snapshot.swap_volume = _to_float(raw.get("swapVolume"))
    snapshot.swap_fees = _to_float(raw.get("swapFees"))
    snapshot.liquidity = _to_float(raw.get("liquidity"))
    snapshot.protocol_yield_fee_cache = _to_float(pool.get("protocolYieldFeeCache"))
    snapshot.protocol_swap_fee_cache = _to_float(pool.get("protocolSwapFeeCache"))


def build_daily_calendar(
    snapshots: List[PoolSnapshotTemp], now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """Forward-fill raw snapshots onto one row per pool per day.

    A raw snapshot is valid on ``[timestamp, next timestamp)``, the latest one
    until ``now``. Days before a pool's first snapshot get no row.
    """
    now = now or datetime.utcnow()
    today = start_of_day(now)
    by_pool: Dict[str, List[PoolSnapshotTemp]] = defaultdict(list)
    for snapshot in snapshots:
        if snapshot.pool_external_id and snapshot.timestamp:
            by_pool[snapshot.pool_external_id].append(snapshot)

    rows = []
    for pool_id, pool_snapshots in by_pool.items():
        pool_snapshots.sort(key=lambda s: s.timestamp)
        for current, following in zip(pool_snapshots, pool_snapshots[1:] + [None]):
            valid_until = following.timestamp if following is not None else now
            day = max(start_of_day(current.timestamp), CALENDAR_START)
            if day < current.timestamp:
                day += timedelta(days=1)
            while day < valid_until and day <= today:
                rows.append(
                    {
                        "external_id": f"{pool_id}-{day}",
                        "pool_external_id": pool_id,
                        "timestamp": day,
                        "amounts": current.amounts,
                        "total_shares": current.total_shares,
                        "swap_volume": current.swap_volume,
                        "swap_fees": current.swap_fees,
                        "liquidity": current.liquidity,
                        "protocol_yield_fee_cache": current.protocol_yield_fee_cache,
                        "protocol_swap_fee_cache": current.protocol_swap_fee_cache,
                        "raw_data": current.raw_data,
                    }
                )
                day += timedelta(days=1)
    return rows


def transform_pool_snapshots_data(session: Session, now: Optional[datetime] = None) -> int:
    """Type the staged snapshots and rebuild the daily snapshot calendar.

    Returns the number of calendar rows written.
    """
    staged = session.execute(select(PoolSnapshotTemp)).scalars().all()
    transform_networks(session, (s.raw_data.get("network") for s in staged))

    pools: Dict[str, Optional[str]] = {}
    for snapshot in staged:
        _fill_snapshot_columns(snapshot)
        if snapshot.pool_external_id:
            pools.setdefault(
                snapshot.pool_external_id,
                normalize_network_slug(snapshot.raw_data.get("network")),
            )
    session.commit()
    _ensure_pools(session, pools)

    rows = build_daily_calendar(staged, now)
    upsert_table(session, PoolSnapshot, rows, ["external_id"])
    logger.info("built %d daily snapshots from %d raw snapshots", len(rows), len(staged))
    return len(rows)


def transform_gauges(session: Session) -> int:
    """Sync ``gauges`` with the staged voting list, deleting dropped gauges."""
    staged = session.execute(select(GaugeTemp)).scalars().all()
    raws = [gauge.raw_data for gauge in staged]
    transform_networks(session, (raw.get("chain") for raw in raws))
    _ensure_pools(session, {raw["id"]: normalize_network_slug(raw.get("chain")) for raw in raws})

    rows = {}
    for raw in raws:
        gauge = raw["gauge"]
        rows[(gauge["address"], raw["id"])] = {
            "address": gauge["address"],
            "pool_external_id": raw["id"],
            "is_killed": bool(gauge.get("isKilled")),
            "external_created_at": _to_datetime(gauge.get("addedTimestamp")),
            "network_slug": normalize_network_slug(raw.get("chain")),
        }
    upsert_table(
        session,
        Gauge,
        list(rows.values()),
        ["address", "pool_external_id"],
        ["is_killed", "external_created_at", "network_slug"],
    )

    if not rows:
        logger.warning("no staged gauges, skipping removal of stale gauges")
        return 0
    existing = session.execute(select(Gauge.id, Gauge.address, Gauge.pool_external_id)).all()
    stale = [row.id for row in existing if (row.address, row.pool_external_id) not in rows]
    if stale:
        session.execute(delete(Gauge).where(Gauge.id.in_(stale)))
        session.commit()
        logger.info("removed %d gauges no longer in the voting list", len(stale))
    return len(rows)

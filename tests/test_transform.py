from datetime import datetime

from balancer_apr.database import (
    Gauge,
    GaugeTemp,
    Pool,
    PoolSnapshot,
    PoolSnapshotTemp,
    PoolToken,
    Token,
)
from balancer_apr.dates import date_to_epoch
from balancer_apr.transform import (
    build_daily_calendar,
    transform_gauges,
    transform_pool_data,
    transform_pool_snapshots_data,
)


def _staged_snapshot(pool_id, when, liquidity, network="ethereum"):
    raw = {
        "id": f"{pool_id}-{date_to_epoch(when)}",
        "pool": {"id": pool_id, "protocolYieldFeeCache": "0.5", "protocolSwapFeeCache": "0.5"},
        "amounts": ["1", "3"],
        "totalShares": "10",
        "swapVolume": "1000",
        "swapFees": "10",
        "liquidity": str(liquidity),
        "timestamp": date_to_epoch(when),
        "network": network,
    }
    return PoolSnapshotTemp(external_id=raw["id"], raw_data=raw)


def _typed_snapshot(pool_id, when, liquidity):
    return PoolSnapshotTemp(
        external_id=f"{pool_id}-{when}",
        pool_external_id=pool_id,
        timestamp=when,
        liquidity=liquidity,
        raw_data={},
    )


def test_calendar_forward_fills_until_next_snapshot():
    snapshots = [
        _typed_snapshot("p1", datetime(2023, 1, 5), 200.0),
        _typed_snapshot("p1", datetime(2023, 1, 1), 100.0),
    ]
    rows = build_daily_calendar(snapshots, now=datetime(2023, 1, 7, 12))

    by_day = {row["timestamp"]: row["liquidity"] for row in rows}
    assert sorted(by_day) == [datetime(2023, 1, day) for day in range(1, 8)]
    assert [by_day[datetime(2023, 1, day)] for day in range(1, 5)] == [100.0] * 4
    assert [by_day[datetime(2023, 1, day)] for day in range(5, 8)] == [200.0] * 3


def test_calendar_has_no_rows_before_first_snapshot():
    rows = build_daily_calendar(
        [_typed_snapshot("p1", datetime(2023, 1, 3, 15), 50.0)], now=datetime(2023, 1, 5, 1)
    )
    assert [row["timestamp"] for row in rows] == [datetime(2023, 1, 4), datetime(2023, 1, 5)]


def test_calendar_starts_at_calendar_start():
    rows = build_daily_calendar(
        [_typed_snapshot("p1", datetime(2021, 4, 1), 1.0)], now=datetime(2021, 4, 22, 6)
    )
    assert [row["timestamp"] for row in rows] == [datetime(2021, 4, 21), datetime(2021, 4, 22)]


def test_calendar_rows_are_keyed_by_pool_and_day():
    rows = build_daily_calendar(
        [_typed_snapshot("p1", datetime(2023, 1, 1), 1.0), _typed_snapshot("p2", datetime(2023, 1, 1), 2.0)],
        now=datetime(2023, 1, 1, 10),
    )
    assert sorted(row["external_id"] for row in rows) == [
        "p1-2023-01-01 00:00:00",
        "p2-2023-01-01 00:00:00",
    ]


def test_transform_pool_snapshots_data_is_rerunnable(session):
    session.add_all(
        [
            _staged_snapshot("p1", datetime(2023, 1, 1), 100),
            _staged_snapshot("p1", datetime(2023, 1, 5), 200),
        ]
    )
    session.commit()

    now = datetime(2023, 1, 6, 12)
    assert transform_pool_snapshots_data(session, now=now) == 6
    transform_pool_snapshots_data(session, now=now)

    snapshots = session.query(PoolSnapshot).order_by(PoolSnapshot.timestamp).all()
    assert len(snapshots) == 6
    assert snapshots[0].liquidity == 100.0
    assert snapshots[-1].liquidity == 200.0
    assert snapshots[0].protocol_swap_fee_cache == 0.5
    assert snapshots[0].amounts == ["1", "3"]
    pool = session.query(Pool).filter_by(external_id="p1").one()
    assert pool.network_slug == "ethereum"


def test_transform_pool_data_explodes_tokens(session):
    raw = {
        "id": "0xpool",
        "address": "0xaddr",
        "symbol": "B-80BAL-20WETH",
        "poolType": "Weighted",
        "poolTypeVersion": "2",
        "createTime": date_to_epoch(datetime(2022, 1, 1)),
        "network": "ethereum",
        "tokens": [
            {"address": "0xbal", "symbol": "BAL", "weight": "0.8", "isExemptFromYieldProtocolFee": False},
            {"address": "0xweth", "symbol": "WETH", "weight": "0.2", "isExemptFromYieldProtocolFee": True},
        ],
        "priceRateProviders": [
            {"address": "0x" + "0" * 40, "token": {"address": "0xbal"}},
            {"address": "0xprovider", "token": {"address": "0xWETH"}},
        ],
    }
    session.add(Pool(external_id="0xpool", raw_data=raw))
    session.commit()

    assert transform_pool_data(session) == 1
    transform_pool_data(session)

    session.expire_all()
    pool = session.query(Pool).filter_by(external_id="0xpool").one()
    assert pool.symbol == "B-80BAL-20WETH"
    assert pool.pool_type == "Weighted"
    assert pool.pool_type_version == 2.0
    assert pool.external_created_at == datetime(2022, 1, 1)

    pool_tokens = session.query(PoolToken).order_by(PoolToken.token_index).all()
    assert [(t.token_address, t.token_index, t.weight) for t in pool_tokens] == [
        ("0xbal", 1, 0.8),
        ("0xweth", 2, 0.2),
    ]
    assert pool_tokens[1].is_exempt_from_yield_protocol_fee is True
    assert [t.rate_provider for t in pool_tokens] == [None, "0xprovider"]
    assert session.query(Token).count() == 2


def _staged_gauge(address, pool_id, chain="MAINNET"):
    raw = {
        "chain": chain,
        "id": pool_id,
        "gauge": {"address": address, "isKilled": False, "addedTimestamp": date_to_epoch(datetime(2022, 5, 1))},
    }
    return GaugeTemp(address=address, pool_external_id=pool_id, raw_data=raw)


def test_transform_gauges_removes_gauges_no_longer_listed(session):
    session.add_all([_staged_gauge("0xg1", "p1"), _staged_gauge("0xg2", "p2")])
    session.commit()
    assert transform_gauges(session) == 2

    session.query(GaugeTemp).delete()
    session.add(_staged_gauge("0xg1", "p1"))
    session.commit()
    transform_gauges(session)

    gauges = session.query(Gauge).all()
    assert [(g.address, g.network_slug) for g in gauges] == [("0xg1", "ethereum")]
    assert gauges[0].external_created_at == datetime(2022, 5, 1)


def test_transform_gauges_keeps_gauges_when_nothing_staged(session):
    session.add(_staged_gauge("0xg1", "p1"))
    session.commit()
    transform_gauges(session)

    session.query(GaugeTemp).delete()
    session.commit()
    assert transform_gauges(session) == 0
    assert session.query(Gauge).count() == 1

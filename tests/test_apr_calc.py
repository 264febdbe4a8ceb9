import asyncio
from datetime import datetime

import pytest

from balancer_apr.apr_calc import (
    RoundIndex,
    calculate_apr,
    calculate_swap_fee_apr,
    calculate_token_yield_apr,
    calculate_vebal_apr,
    seed_bal_emission,
    swap_fee_apr,
    token_share,
    token_yield_apr,
    vebal_apr,
)
from balancer_apr.database import (
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
)
from balancer_apr.onchain import fetch_token_rates
from balancer_apr.prices import BAL_ADDRESS
from balancer_apr.rounds import generate_rounds, round_number_for, seed_vebal_rounds


class _Round:
    def __init__(self, round_number, start_date, end_date):
        self.round_number = round_number
        self.start_date = start_date
        self.end_date = end_date


def _snapshot(pool_id, day, swap_fees=0.0, liquidity=1000.0, **kwargs):
    return PoolSnapshot(
        external_id=f"{pool_id}-{day}",
        pool_external_id=pool_id,
        timestamp=day,
        swap_fees=swap_fees,
        liquidity=liquidity,
        **kwargs,
    )


def test_swap_fee_apr():
    assert swap_fee_apr(110.0, 100.0, 0.5, 1000.0) == pytest.approx(182.5)


def test_swap_fee_apr_defaults_protocol_fee():
    assert swap_fee_apr(110.0, 100.0, None, 1000.0) == pytest.approx(182.5)
    assert swap_fee_apr(110.0, 100.0, 0.0, 1000.0) == pytest.approx(365.0)


def test_apr_without_liquidity_is_zero():
    assert swap_fee_apr(110.0, 100.0, 0.5, 0.0) == 0.0
    assert vebal_apr(145_000, 0.1, 5.0, 0.0) == 0.0


def test_vebal_apr():
    assert vebal_apr(100_000, 0.01, 5.0, 1_000_000) == pytest.approx(26.0)


def test_token_yield_apr():
    assert token_yield_apr(1.0001, 1.0, 0.5, 0.5) == pytest.approx(0.9125)
    assert token_yield_apr(1.0001, 1.0, 0.5, 0.5, is_exempt=True) == pytest.approx(1.825)
    assert token_yield_apr(1.0001, 0.0, 0.5, 0.5) == 0.0


def test_token_share_prefers_weight():
    assert token_share(PoolToken(weight=0.8, token_index=1), ["1", "3"]) == 0.8
    assert token_share(PoolToken(weight=None, token_index=2), ["1", "3"]) == pytest.approx(0.75)
    assert token_share(PoolToken(weight=None, token_index=3), ["1", "3"]) == 0.0
    assert token_share(PoolToken(weight=None, token_index=1), None) == 0.0


def test_round_index():
    index = RoundIndex([_Round(**r) for r in generate_rounds(datetime(2022, 5, 1))])
    assert index.round_for(datetime(2022, 4, 14)) == 1
    assert index.round_for(datetime(2022, 4, 20, 23)) == 1
    assert index.round_for(datetime(2022, 4, 21)) == 2
    assert index.round_for(datetime(2022, 4, 1)) is None
    assert index.round_for(datetime(2023, 1, 1)) is None


def test_calculate_swap_fee_apr_needs_previous_day(session):
    session.add_all(
        [
            _snapshot("p1", datetime(2023, 1, 1), swap_fees=100.0, protocol_swap_fee_cache=0.5),
            _snapshot("p1", datetime(2023, 1, 2), swap_fees=110.0, protocol_swap_fee_cache=0.5),
            _snapshot("p1", datetime(2023, 1, 4), swap_fees=130.0, protocol_swap_fee_cache=0.5),
        ]
    )
    session.commit()

    assert calculate_swap_fee_apr(session) == 1
    assert calculate_swap_fee_apr(session) == 0

    rows = session.query(SwapFeeApr).all()
    assert len(rows) == 1
    assert rows[0].timestamp == datetime(2023, 1, 2)
    assert rows[0].value == pytest.approx(182.5)
    assert rows[0].collected_fees_usd == pytest.approx(10.0)


def test_calculate_vebal_apr(session):
    day = datetime(2023, 1, 5)
    seed_vebal_rounds(session, until=day)
    session.add_all(
        [
            Pool(external_id="p1", network_slug="ethereum"),
            _snapshot("p1", day, liquidity=1_000_000),
            Gauge(address="0xg1", pool_external_id="p1", is_killed=False),
            TokenPrice(token_address=BAL_ADDRESS, network_slug="ethereum", timestamp=day, price_usd=5.0),
        ]
    )
    session.commit()
    round_number = round_number_for(day)
    session.add(
        GaugeSnapshot(
            gauge_address="0xg1",
            timestamp=datetime(2022, 12, 29),
            relative_weight=0.01,
            round_number=round_number,
        )
    )
    session.commit()
    assert seed_bal_emission(session) == 1
    emission = session.query(BalEmission).one().week_emission

    assert calculate_vebal_apr(session) == 1
    row = session.query(VebalApr).one()
    assert row.value == pytest.approx(52 * emission * 0.01 * 5.0 / 1_000_000 * 100)


def test_calculate_vebal_apr_skips_days_without_price(session):
    day = datetime(2023, 1, 5)
    seed_vebal_rounds(session, until=day)
    session.add_all(
        [
            _snapshot("p1", day),
            Gauge(address="0xg1", pool_external_id="p1"),
            GaugeSnapshot(gauge_address="0xg1", timestamp=day, relative_weight=0.5, round_number=round_number_for(day)),
        ]
    )
    session.commit()
    seed_bal_emission(session)
    assert calculate_vebal_apr(session) == 0


def test_calculate_token_yield_apr(session):
    day = datetime(2023, 1, 2)
    session.add_all(
        [
            Pool(external_id="p1", network_slug="ethereum"),
            PoolToken(pool_external_id="p1", token_address="0xWSTETH", token_index=1, weight=0.5),
            PoolToken(pool_external_id="p1", token_address="0xweth", token_index=2, weight=0.5),
            _snapshot("p1", datetime(2023, 1, 1), protocol_yield_fee_cache=0.5),
            _snapshot("p1", day, protocol_yield_fee_cache=0.5),
            TokenRate(token_address="0xwsteth", network_slug="ethereum", timestamp=datetime(2023, 1, 1), rate=1.0),
            TokenRate(token_address="0xwsteth", network_slug="ethereum", timestamp=day, rate=1.0001),
        ]
    )
    session.commit()

    assert calculate_token_yield_apr(session) == 1
    row = session.query(TokenYieldApr).one()
    assert row.token_address == "0xwsteth"
    assert row.timestamp == day
    assert row.value == pytest.approx(0.9125)


class _RateReader:
    def __init__(self, rates):
        self.rates = rates
        self.read = []

    def read_rate(self, provider):
        self.read.append(provider)
        return self.rates[provider]


def test_token_yield_from_pool_rate_providers(session):
    provider = "0x" + "72" * 20
    session.add_all(
        [
            Pool(external_id="p1", network_slug="ethereum"),
            PoolToken(
                pool_external_id="p1",
                token_address="0xWSTETH",
                network_slug="ethereum",
                token_index=1,
                weight=0.5,
                rate_provider=provider,
            ),
            PoolToken(pool_external_id="p1", token_address="0xweth", network_slug="ethereum", token_index=2, weight=0.5),
            _snapshot("p1", datetime(2023, 1, 1), protocol_yield_fee_cache=0.5),
            _snapshot("p1", datetime(2023, 1, 2), protocol_yield_fee_cache=0.5),
        ]
    )
    session.commit()

    asyncio.run(fetch_token_rates(session, _RateReader({provider: 1.0}), day=datetime(2023, 1, 1)))
    reader = _RateReader({provider: 1.0001})
    asyncio.run(fetch_token_rates(session, reader, day=datetime(2023, 1, 2)))
    assert reader.read == [provider]

    assert calculate_apr(session)["token_yield"] == 1
    row = session.query(TokenYieldApr).one()
    assert row.token_address == "0xwsteth"
    assert row.value == pytest.approx(0.9125)

import asyncio

from balancer_apr import etl


def test_run_etls_runs_steps_in_order(session, monkeypatch):
    steps = []

    def record(name, result=None):
        def sync_step(*args, **kwargs):
            steps.append(name)
            return result

        async def async_step(*args, **kwargs):
            steps.append(name)
            return result

        return sync_step, async_step

    for name in ("seed_networks", "seed_vebal_rounds", "seed_bal_emission", "calculate_apr"):
        monkeypatch.setattr(etl, name, record(name, {})[0])
    for name in ("etl_pools", "etl_snapshots", "etl_gauges", "fetch_bal_prices", "fetch_token_rates", "extract_gauges_snapshot"):
        monkeypatch.setattr(etl, name, record(name, {})[1])

    summary = asyncio.run(etl.run_etls(session=session, reader=object()))

    assert steps == [
        "seed_networks",
        "seed_vebal_rounds",
        "etl_pools",
        "etl_snapshots",
        "etl_gauges",
        "seed_bal_emission",
        "fetch_bal_prices",
        "fetch_token_rates",
        "extract_gauges_snapshot",
        "calculate_apr",
    ]
    assert summary["apr"] == {}


def test_etl_gauges_continues_after_extraction_failure(session, monkeypatch):
    transformed = []

    async def failing_extract(session):
        raise etl.SubgraphError("http://api", "down")

    monkeypatch.setattr(etl, "extract_gauges", failing_extract)
    monkeypatch.setattr(etl, "transform_gauges", lambda session: transformed.append(True) or 0)

    failure = asyncio.run(etl.etl_gauges(session))
    assert isinstance(failure, etl.SubgraphError)
    assert transformed == [True]

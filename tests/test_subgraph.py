import asyncio

import pytest

from balancer_apr import subgraph
from balancer_apr.subgraph import SubgraphError, page_rows, paginate, paginated_fetch


def _pages(*sizes):
    pages = []
    offset = 0
    for size in sizes:
        pages.append({"pools": [{"id": f"{offset + i:06d}"} for i in range(size)]})
        offset += size
    return pages


def test_paginate_stops_on_short_page():
    pages = _pages(1000, 1000, 437)
    cursors = []

    async def fetch(latest_id):
        cursors.append(latest_id)
        return pages[len(cursors) - 1]

    requested = asyncio.run(paginate(fetch))

    assert requested == 3
    assert cursors == ["", "000999", "001999"]


def test_paginate_single_empty_page():
    calls = []

    async def fetch(latest_id):
        calls.append(latest_id)
        return {"pools": []}

    assert asyncio.run(paginate(fetch, initial_id="0xabc")) == 1
    assert calls == ["0xabc"]


def test_paginated_fetch_processes_every_page(monkeypatch):
    pages = _pages(1000, 12)
    variables_seen = []
    processed = []

    async def fake_gql(endpoint, query, variables=None):
        variables_seen.append(variables)
        return pages[len(variables_seen) - 1]

    async def process(data):
        processed.append(len(data["pools"]))

    monkeypatch.setattr(subgraph, "gql", fake_gql)
    asyncio.run(paginated_fetch("http://subgraph", "query", process))

    assert processed == [1000, 12]
    assert variables_seen == [{"latestId": ""}, {"latestId": "000999"}]


def test_paginated_fetch_propagates_errors(monkeypatch):
    processed = []

    async def failing_gql(endpoint, query, variables=None):
        raise SubgraphError(endpoint, "boom")

    async def process(data):
        processed.append(data)

    monkeypatch.setattr(subgraph, "gql", failing_gql)
    with pytest.raises(SubgraphError):
        asyncio.run(paginated_fetch("http://subgraph", "query", process))
    assert processed == []


def test_gql_raises_on_graphql_errors(monkeypatch):
    monkeypatch.setattr(
        subgraph, "_post", lambda endpoint, query, variables: {"errors": [{"message": "bad"}]}
    )
    with pytest.raises(SubgraphError) as excinfo:
        asyncio.run(subgraph.gql("http://subgraph", "query"))
    assert excinfo.value.endpoint == "http://subgraph"


def test_gql_returns_data(monkeypatch):
    monkeypatch.setattr(
        subgraph, "_post", lambda endpoint, query, variables: {"data": {"pools": [{"id": "1"}]}}
    )
    assert asyncio.run(subgraph.gql("http://subgraph", "query")) == {"pools": [{"id": "1"}]}


def test_page_rows():
    assert page_rows(None) == []
    assert page_rows({}) == []
    assert page_rows({"poolSnapshots": None}) == []
    assert page_rows({"poolSnapshots": [{"id": "a"}]}) == [{"id": "a"}]

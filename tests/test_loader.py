from datetime import datetime

from balancer_apr.database import Network, VebalRound
from balancer_apr.loader import add_to_table, chunks, upsert_table
from balancer_apr.rounds import generate_rounds


def test_chunks_split_in_batches():
    sizes = [len(chunk) for chunk in chunks(list(range(2500)))]
    assert sizes == [1000, 1000, 500]


def test_add_to_table_ignores_duplicates(session):
    rows = generate_rounds(until=datetime(2022, 6, 1))
    assert add_to_table(session, VebalRound, rows) == len(rows)
    add_to_table(session, VebalRound, rows)
    assert session.query(VebalRound).count() == len(rows)


def test_add_to_table_without_rows(session):
    assert add_to_table(session, VebalRound, []) == 0


def test_upsert_table_overwrites_update_columns(session):
    now = datetime(2023, 1, 1)
    row = {"slug": "base", "name": "Base", "chain_id": 0, "created_at": now, "updated_at": now}
    upsert_table(session, Network, [row], ["slug"], ["chain_id"])
    upsert_table(session, Network, [{**row, "chain_id": 8453, "name": "Other"}], ["slug"], ["chain_id"])

    network = session.query(Network).filter_by(slug="base").one()
    assert network.chain_id == 8453
    assert network.name == "Base"
    assert session.query(Network).count() == 1

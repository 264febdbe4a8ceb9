"""Batched, idempotent writes into the relational store."""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type

from prometheus_client import Counter
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .database import Base

logger = logging.getLogger(__name__)

BATCH_SIZE = 1_000

ROWS_SUBMITTED_COUNTER = Counter(
    "etl_rows_submitted_total",
    "Rows handed to batched inserts, by table",
    ["table"],
)


def chunks(items: Sequence[Any], size: int = BATCH_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _insert(session: Session, model: Type[Base]):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"no ON CONFLICT support for dialect {dialect}")


def add_to_table(session: Session, model: Type[Base], rows: List[Dict[str, Any]]) -> int:
    """Insert ``rows`` in chunks, silently skipping rows that hit a unique constraint.

    Safe to re-run with the same rows. Returns the number of rows submitted.
    """
    if not rows:
        return 0
    for chunk in chunks(rows):
        stmt = _insert(session, model).values(list(chunk)).on_conflict_do_nothing()
        session.execute(stmt)
    session.commit()
    ROWS_SUBMITTED_COUNTER.labels(table=model.__tablename__).inc(len(rows))
    logger.debug("submitted %d rows to %s", len(rows), model.__tablename__)
    return len(rows)


def upsert_table(
    session: Session,
    model: Type[Base],
    rows: List[Dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Optional[Sequence[str]] = None,
) -> int:
    """Insert ``rows`` in chunks, overwriting ``update_columns`` on conflict.

    ``update_columns`` defaults to every submitted column outside the conflict
    target.
    """
    if not rows:
        return 0
    if update_columns is None:
        update_columns = [key for key in rows[0] if key not in index_elements]
    for chunk in chunks(rows):
        stmt = _insert(session, model).values(list(chunk))
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(index_elements),
                set_={column: stmt.excluded[column] for column in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(index_elements))
        session.execute(stmt)
    session.commit()
    ROWS_SUBMITTED_COUNTER.labels(table=model.__tablename__).inc(len(rows))
    logger.debug("upserted %d rows into %s", len(rows), model.__tablename__)
    return len(rows)

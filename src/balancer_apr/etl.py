"""End-to-end ETL run: seed, extract, transform, fetch on-chain data, compute APR."""

import argparse
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from prometheus_client import Gauge as PrometheusGauge
from sqlalchemy.orm import Session

from .apr_calc import calculate_apr, seed_bal_emission
from .database import SessionLocal, init_db
from .extract import (
    EXTRACTION_FAILURE_COUNTER,
    extract_for_networks,
    extract_gauges,
    extract_pool_snapshots_for_network,
    extract_pools_for_network,
)
from .onchain import OnchainReader, extract_gauges_snapshot, fetch_token_rates
from .prices import fetch_bal_prices
from .rounds import seed_vebal_rounds
from .subgraph import SubgraphError
from .transform import seed_networks, transform_gauges, transform_pool_data, transform_pool_snapshots_data

logger = logging.getLogger(__name__)

LAST_SUCCESSFUL_RUN = PrometheusGauge(
    "etl_last_successful_run_timestamp_seconds",
    "Unix time of the last ETL run that completed",
)


async def etl_pools(session: Session, networks: Optional[List[str]] = None) -> Dict[str, BaseException]:
    logger.debug("starting pools extraction")
    failures = await extract_for_networks(
        "pools",
        lambda network, endpoint: extract_pools_for_network(session, network, endpoint),
        networks,
    )
    logger.debug("starting pools transformation")
    transform_pool_data(session)
    return failures


async def etl_snapshots(
    session: Session, networks: Optional[List[str]] = None
) -> Dict[str, BaseException]:
    logger.debug("starting pool snapshots extraction")
    failures = await extract_for_networks(
        "pool_snapshots",
        lambda network, endpoint: extract_pool_snapshots_for_network(session, network, endpoint),
        networks,
    )
    logger.debug("starting pool snapshots transformation")
    transform_pool_snapshots_data(session)
    return failures


async def etl_gauges(session: Session) -> Optional[BaseException]:
    logger.debug("starting gauges extraction")
    failure = None
    try:
        await extract_gauges(session)
    except SubgraphError as exc:
        EXTRACTION_FAILURE_COUNTER.labels(entity="gauges", network="all").inc()
        logger.error("gauge extraction failed: %s", exc)
        failure = exc
    logger.debug("starting gauges transformation")
    transform_gauges(session)
    return failure


async def run_etls(
    session: Optional[Session] = None,
    reader: Optional[OnchainReader] = None,
    networks: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Run every ETL step in order and return a summary of the run."""
    logger.info("starting ETL processes")
    own_session = session is None
    session = session or SessionLocal()
    try:
        seed_networks(session)
        logger.debug("seeding veBAL rounds")
        seed_vebal_rounds(session)
        summary: Dict[str, Any] = {
            "pool_failures": await etl_pools(session, networks),
            "snapshot_failures": await etl_snapshots(session, networks),
            "gauge_failure": await etl_gauges(session),
        }
        seed_bal_emission(session)
        summary["prices"] = await fetch_bal_prices(session)
        reader = reader or OnchainReader()
        summary["token_rates"] = await fetch_token_rates(session, reader)
        logger.debug("starting gauges snapshot extraction")
        summary["gauge_snapshots"] = await extract_gauges_snapshot(session, reader)
        summary["apr"] = calculate_apr(session)
    except Exception:
        session.rollback()
        logger.exception("ETL run failed")
        raise
    finally:
        if own_session:
            session.close()
    LAST_SUCCESSFUL_RUN.set(time.time())
    logger.info("ended ETL processes")
    return summary


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the Balancer APR ETL")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every step")
    parser.add_argument(
        "--network",
        action="append",
        dest="networks",
        help="restrict extraction to this network (repeatable)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    init_db()
    asyncio.run(run_etls(networks=args.networks))


if __name__ == "__main__":
    main()

"""Historical USD prices from DefiLlama."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .database import PoolSnapshot, TokenPrice
from .dates import date_to_epoch, start_of_day
from .loader import add_to_table

logger = logging.getLogger(__name__)

BAL_ADDRESS = "0xba100000625a3754423978a60c9317c58a424e3d"
BAL_COIN = f"ethereum:{BAL_ADDRESS}"


class PriceSourceError(RuntimeError):
    """Raised when the price source cannot be reached or returns garbage."""


def get_historical_price(day: datetime, coins: List[str]) -> Dict[str, Dict[str, float]]:
    """Return DefiLlama's ``coins`` mapping (``"network:address"`` -> price info)."""
    url = f"{settings.defillama_url}/prices/historical/{date_to_epoch(day)}/{','.join(coins)}"
    try:
        response = requests.get(url, timeout=settings.http_timeout)
        response.raise_for_status()
        return response.json().get("coins", {})
    except (requests.RequestException, ValueError) as exc:
        raise PriceSourceError(f"failed to fetch prices for {coins} on {day}") from exc


def price_rows(day: datetime, coins: Dict[str, Dict[str, float]]) -> List[Dict[str, object]]:
    rows = []
    for key, info in coins.items():
        network, address = key.split(":", 1)
        rows.append(
            {
                "token_address": address.lower(),
                "network_slug": network,
                "timestamp": start_of_day(day),
                "price_usd": info.get("price"),
            }
        )
    return rows


async def fetch_bal_prices(session: Session, days: Optional[List[datetime]] = None) -> int:
    """Store the BAL price of every snapshot day not priced yet.

    Days whose request fails are logged and left for the next run.
    """
    if days is None:
        days = session.execute(
            select(PoolSnapshot.timestamp).distinct().order_by(PoolSnapshot.timestamp)
        ).scalars().all()
    priced = set(
        session.execute(
            select(TokenPrice.timestamp).where(TokenPrice.token_address == BAL_ADDRESS)
        ).scalars().all()
    )
    stored = 0
    for day in days:
        if day is None or start_of_day(day) in priced:
            continue
        try:
            coins = await asyncio.to_thread(get_historical_price, day, [BAL_COIN])
        except PriceSourceError as exc:
            logger.error("%s", exc)
            continue
        stored += add_to_table(session, TokenPrice, price_rows(day, coins))
        logger.debug("fetched BAL price for %s", day)
    logger.info("stored %d token prices", stored)
    return stored

"""veBAL voting rounds: fixed weekly windows from 2022-04-14."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import VebalRound
from .loader import add_to_table

FIRST_ROUND_START = datetime(2022, 4, 14)
ROUND_LENGTH = timedelta(days=7)


def round_end(start: datetime) -> datetime:
    return start + timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)


def generate_rounds(until: Optional[datetime] = None) -> List[Dict[str, Union[int, datetime]]]:
    """Rounds from the first one up to the one containing ``until`` (default now)."""
    until = until or datetime.utcnow()
    rounds = []
    start = FIRST_ROUND_START
    number = 1
    while start <= until:
        rounds.append({"round_number": number, "start_date": start, "end_date": round_end(start)})
        start += ROUND_LENGTH
        number += 1
    return rounds


def round_number_for(value: datetime) -> int:
    """Number of the round ``value`` falls in; dates before the first round raise."""
    if value < FIRST_ROUND_START:
        raise ValueError(f"{value} is before the first veBAL round")
    return (value - FIRST_ROUND_START) // ROUND_LENGTH + 1


def seed_vebal_rounds(session: Session, until: Optional[datetime] = None) -> int:
    return add_to_table(session, VebalRound, generate_rounds(until))


def get_round(session: Session, round_number: int) -> Optional[VebalRound]:
    return session.execute(
        select(VebalRound).where(VebalRound.round_number == round_number)
    ).scalar_one_or_none()

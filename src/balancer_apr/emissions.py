"""BAL emission schedule.

Emissions started at 145,000 BAL per week on 2022-03-28 and are cut by a
factor of ``2 ** (1 / 4)`` every 365 days.
"""

INITIAL_RATE = 145_000
START_EPOCH_TIME = 1648465251
RATE_REDUCTION_TIME = 365 * 86400
RATE_REDUCTION_COEFFICIENT = 2 ** (1 / 4)


def get_epoch(time: int) -> int:
    """Index of the emission epoch ``time`` (unix seconds) falls in."""
    if time < START_EPOCH_TIME:
        raise ValueError("Provided time is before BAL token minting started")
    return (time - START_EPOCH_TIME) // RATE_REDUCTION_TIME


def weekly(time: int) -> float:
    """BAL emitted per week at ``time``."""
    return INITIAL_RATE / RATE_REDUCTION_COEFFICIENT ** get_epoch(time)

"""Pydantic models for pool statistics and API query parameters."""

from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .networks import normalize_network_slug


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenInfo(CamelModel):
    address: str
    symbol: Optional[str] = None
    weight: Optional[float] = None


class TokenYield(CamelModel):
    address: Optional[str] = None
    symbol: str
    yield_: float = Field(0.0, alias="yield")


class TokensApr(CamelModel):
    total: float = 0.0
    breakdown: List[TokenYield] = Field(default_factory=list)


class AprBreakdown(CamelModel):
    vebal: float = Field(0.0, alias="veBAL")
    swap_fee: float = 0.0
    tokens: TokensApr = Field(default_factory=TokensApr)


class Apr(CamelModel):
    total: float = 0.0
    breakdown: AprBreakdown = Field(default_factory=AprBreakdown)


class PoolStatsData(CamelModel):
    """Statistics of one pool on one day."""

    pool_id: str
    symbol: Optional[str] = None
    network: Optional[str] = None
    pool_type: Optional[str] = Field(None, alias="type")
    tokens: List[TokenInfo] = Field(default_factory=list)
    apr: Apr = Field(default_factory=Apr)
    bal_price_usd: float = Field(0.0, alias="balPriceUSD")
    tvl: float = 0.0
    volume: float = 0.0
    voting_share: float = 0.0
    collected_fees_usd: float = Field(0.0, alias="collectedFeesUSD")


class PoolAverages(CamelModel):
    """Averages over a date range; voting share and collected fees are left out."""

    pool_average: List[PoolStatsData] = Field(default_factory=list)
    apr: Apr = Field(default_factory=Apr)
    bal_price_usd: float = Field(0.0, alias="balPriceUSD")
    tvl: float = 0.0
    volume: float = 0.0


class PoolStatsResults(CamelModel):
    per_day: Dict[str, List[PoolStatsData]] = Field(default_factory=dict)
    average: PoolAverages = Field(default_factory=PoolAverages)


SortField = Literal[
    "apr",
    "tvl",
    "volume",
    "votingShare",
    "balPriceUSD",
    "collectedFeesUSD",
    "symbol",
    "network",
    "type",
    "poolId",
]


def _split_csv(value):
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class FilterParams(CamelModel):
    """Optional filters; every supplied one has to hold for a pool to be kept."""

    network: Optional[str] = None
    min_apr: Optional[float] = None
    max_apr: Optional[float] = None
    min_tvl: Optional[float] = None
    max_tvl: Optional[float] = None
    min_voting_share: Optional[float] = None
    max_voting_share: Optional[float] = None
    tokens: Optional[List[str]] = None
    types: Optional[List[str]] = None

    @field_validator("network")
    @classmethod
    def _normalize_network(cls, value):
        return normalize_network_slug(value)

    @field_validator("tokens", "types", mode="before")
    @classmethod
    def _split(cls, value):
        return _split_csv(value)


class AprQueryParams(FilterParams):
    pool_id: Optional[str] = None
    start_at: Optional[date] = None
    end_at: Optional[date] = None
    round_id: Optional[int] = Field(None, ge=1)
    sort: SortField = "apr"
    order: Literal["asc", "desc"] = "desc"
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.round_id is None:
            if self.start_at is None or self.end_at is None:
                raise ValueError("either roundId or both startAt and endAt are required")
            if self.start_at > self.end_at:
                raise ValueError("startAt must be before endAt")
        return self

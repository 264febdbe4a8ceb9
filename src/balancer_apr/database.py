"""Database setup and models for the APR pipeline."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

engine = create_engine(settings.database_url, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


class Network(Base):
    """A chain Balancer is deployed on."""

    __tablename__ = "networks"

    id = Column(Integer, primary_key=True)
    slug = Column(String, unique=True, nullable=False)
    name = Column(String)
    chain_id = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Pool(Base):
    """A Balancer pool. ``raw_data`` keeps the subgraph payload it came from."""

    __tablename__ = "pools"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_type = Column(String)
    pool_type_version = Column(Float)
    address = Column(String)
    symbol = Column(String)
    total_liquidity = Column(Float)
    network_slug = Column(String, ForeignKey("networks.slug"))
    external_created_at = Column(DateTime)
    raw_data = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Token(Base):
    __tablename__ = "tokens"
    __table_args__ = (UniqueConstraint("address", "network_slug"),)

    id = Column(Integer, primary_key=True)
    address = Column(String, nullable=False)
    symbol = Column(String)
    network_slug = Column(String, ForeignKey("networks.slug"), nullable=False)


class PoolToken(Base):
    """Position of a token inside a pool; ``token_index`` is 1-based."""

    __tablename__ = "pool_tokens"
    __table_args__ = (UniqueConstraint("pool_external_id", "token_address"),)

    id = Column(Integer, primary_key=True)
    pool_external_id = Column(String, ForeignKey("pools.external_id"), nullable=False)
    token_address = Column(String, nullable=False)
    network_slug = Column(String, ForeignKey("networks.slug"))
    weight = Column(Float)
    token_index = Column(Integer)
    is_exempt_from_yield_protocol_fee = Column(Boolean)
    rate_provider = Column(String)


class PoolSnapshotTemp(Base):
    """Raw subgraph snapshots, at irregular event timestamps."""

    __tablename__ = "pool_snapshots_temp"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_external_id = Column(String, index=True)
    timestamp = Column(DateTime)
    amounts = Column(JSON)
    total_shares = Column(Float)
    swap_volume = Column(Float)
    swap_fees = Column(Float)
    liquidity = Column(Float)
    protocol_yield_fee_cache = Column(Float)
    protocol_swap_fee_cache = Column(Float)
    raw_data = Column(JSON)


class PoolSnapshot(Base):
    """One row per pool per calendar day, forward-filled from the raw snapshots."""

    __tablename__ = "pool_snapshots"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_external_id = Column(String, ForeignKey("pools.external_id"), index=True)
    timestamp = Column(DateTime, index=True)
    amounts = Column(JSON)
    total_shares = Column(Float)
    swap_volume = Column(Float)
    swap_fees = Column(Float)
    liquidity = Column(Float)
    protocol_yield_fee_cache = Column(Float)
    protocol_swap_fee_cache = Column(Float)
    raw_data = Column(JSON)


class GaugeTemp(Base):
    """Voting list as returned by the latest gauge extraction."""

    __tablename__ = "gauges_temp"
    __table_args__ = (UniqueConstraint("address", "pool_external_id"),)

    id = Column(Integer, primary_key=True)
    address = Column(String, nullable=False)
    pool_external_id = Column(String, nullable=False)
    raw_data = Column(JSON)


class Gauge(Base):
    __tablename__ = "gauges"
    __table_args__ = (UniqueConstraint("address", "pool_external_id"),)

    id = Column(Integer, primary_key=True)
    address = Column(String, nullable=False)
    pool_external_id = Column(String, ForeignKey("pools.external_id"), nullable=False)
    is_killed = Column(Boolean, default=False)
    external_created_at = Column(DateTime)
    network_slug = Column(String, ForeignKey("networks.slug"))


class GaugeSnapshot(Base):
    """Relative voting weight of a gauge at the start of a veBAL round."""

    __tablename__ = "gauge_snapshots"
    __table_args__ = (UniqueConstraint("gauge_address", "round_number"),)

    id = Column(Integer, primary_key=True)
    gauge_address = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False)
    relative_weight = Column(Float)
    round_number = Column(Integer, nullable=False)


class VebalRound(Base):
    __tablename__ = "vebal_rounds"

    id = Column(Integer, primary_key=True)
    round_number = Column(Integer, unique=True, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)


class TokenPrice(Base):
    __tablename__ = "token_prices"
    __table_args__ = (UniqueConstraint("token_address", "network_slug", "timestamp"),)

    id = Column(Integer, primary_key=True)
    token_address = Column(String, nullable=False)
    network_slug = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    price_usd = Column(Float)


class TokenRate(Base):
    """Daily rate of a yield-bearing token, read from its rate provider."""

    __tablename__ = "token_rates"
    __table_args__ = (UniqueConstraint("token_address", "network_slug", "timestamp"),)

    id = Column(Integer, primary_key=True)
    token_address = Column(String, nullable=False)
    network_slug = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    rate = Column(Float, nullable=False)


class BalEmission(Base):
    __tablename__ = "bal_emission"

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, unique=True, nullable=False)
    week_emission = Column(Float, nullable=False)


class SwapFeeApr(Base):
    __tablename__ = "swap_fee_apr"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_external_id = Column(String, index=True, nullable=False)
    timestamp = Column(DateTime, index=True, nullable=False)
    collected_fees_usd = Column(Float)
    value = Column(Float)


class VebalApr(Base):
    __tablename__ = "vebal_apr"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_external_id = Column(String, index=True, nullable=False)
    timestamp = Column(DateTime, index=True, nullable=False)
    value = Column(Float)


class TokenYieldApr(Base):
    __tablename__ = "token_yield_apr"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    pool_external_id = Column(String, index=True, nullable=False)
    token_address = Column(String, nullable=False)
    timestamp = Column(DateTime, index=True, nullable=False)
    value = Column(Float)


def init_db() -> None:
    """Create database tables if they do not exist."""
    Base.metadata.create_all(bind=engine)

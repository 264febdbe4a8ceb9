"""create apr tables

Revision ID: 3b9d51c0a7e2
Revises: 
Create Date: 2026-10-17 09:12:41.508311

"""
from typing import Sequence, Union

from alembic import op
from balancer_apr.database import Base


# revision identifiers, used by Alembic.
revision: str = '3b9d51c0a7e2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the network, pool, gauge, price, round and APR tables."""
    bind = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Drop every table created by :func:`upgrade`."""
    bind = op.get_bind()
    Base.metadata.drop_all(bind)

"""Add indicator columns to market_snapshots.

Revision ID: 002_market_indicators
Revises: 001_initial
Create Date: 2026-10-19 00:02:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_market_indicators"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_FLOAT_COLUMNS = (
    "rsi_average",
    "macd_line",
    "macd_signal",
    "macd_histogram",
    "bb_upper",
    "bb_middle",
    "bb_lower",
)


def upgrade() -> None:
    with op.batch_alter_table("market_snapshots") as batch:
        for name in _FLOAT_COLUMNS:
            batch.add_column(sa.Column(name, sa.Float(), nullable=True))
        batch.add_column(sa.Column("macd_cross", sa.String(8), nullable=True))
        batch.add_column(sa.Column("closes_json", sa.Text(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("market_snapshots") as batch:
        batch.drop_column("closes_json")
        batch.drop_column("macd_cross")
        for name in reversed(_FLOAT_COLUMNS):
            batch.drop_column(name)

"""Create events table.

`hash` is the dedup key used by the upsert path; start_date and city back the
listing filters and ordering of GET /api/events.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa

revision = "5b2e9c4f1a7d"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("city", sa.String(length=50), nullable=False),
        sa.Column("venue", sa.String(length=200), nullable=True),
        sa.Column("address", sa.String(length=300), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("source_url", sa.String(length=500), nullable=True),
        sa.Column("price_range", sa.String(length=100), nullable=True),
        sa.Column("organizer", sa.String(length=200), nullable=True),
        sa.Column("hash", sa.String(length=128), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_events"),
        sa.UniqueConstraint("hash", name="uq_events_hash"),
    )
    op.create_index("ix_events_start_date", "events", ["start_date"], unique=False)
    op.create_index("ix_events_city", "events", ["city"], unique=False)
    logger.info("events.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_events_city", table_name="events")
    op.drop_index("ix_events_start_date", table_name="events")
    op.drop_table("events")

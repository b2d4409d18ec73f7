"""Create investors table for the canonical investor set.

Each row stores the full camelCase investor payload as JSON; the name columns
exist for lookups and for inspecting data without decoding the payload.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "4b8e2f71c0d9"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "investors",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("normalized_name", sa.String(length=512), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("source", sa.String(length=255), nullable=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_investors"),
    )
    op.create_index("ix_investors_normalized_name", "investors", ["normalized_name"], unique=False)
    logger.info("investors.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_investors_normalized_name", table_name="investors")
    op.drop_table("investors")
    logger.info("investors.migration.reverted", extra={"revision": revision})

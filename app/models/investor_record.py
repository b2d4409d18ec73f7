"""SQLModel mapping for stored investor records."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.investor import Investor


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


class InvestorRecord(SQLModel, table=True):
    """ORM row holding one canonical investor as a JSON payload."""

    __tablename__ = "investors"
    __table_args__ = (sa.Index("ix_investors_normalized_name", "normalized_name"),)

    id: str = Field(
        sa_column=Column(String(length=64), primary_key=True, nullable=False),
    )
    normalized_name: str = Field(
        sa_column=Column(String(length=512), nullable=False),
    )
    name: str = Field(sa_column=Column(String(length=512), nullable=False))
    source: str = Field(sa_column=Column(String(length=255), nullable=False))
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
        ),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
            onupdate=UtcNow(),
        ),
    )

    @classmethod
    def from_investor(cls, investor: Investor) -> InvestorRecord:
        """Convert a canonical Investor into a persistence row."""
        return cls(
            id=investor.id,
            normalized_name=investor.name.lower().strip(),
            name=investor.name,
            source=investor.source,
            payload=investor.to_payload(),
            created_at=investor.scraped_at,
            updated_at=investor.last_updated,
        )

    def to_investor(self) -> Investor:
        """Hydrate the Investor domain model from the stored JSON payload."""
        return Investor.model_validate(self.payload)

"""Domain models for investor records and search results."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PROFILE_LIST_FIELDS: tuple[str, ...] = ("investment_stage", "geographic_focus", "portfolio")
PROFILE_TEXT_FIELDS: tuple[str, ...] = (
    "check_size",
    "investment_philosophy",
    "funding_source",
    "exit_expectations",
    "decision_process",
    "decision_speed",
    "reputation",
    "network",
    "traction_required",
    "board_participation",
)
PROFILE_FIELDS: tuple[str, ...] = PROFILE_LIST_FIELDS + PROFILE_TEXT_FIELDS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_text(value: Any) -> str | None:
    """Collapse loosely typed model output into a stripped string or None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, (list, tuple)):
        parts = [coerce_text(item) for item in value]
        value = ", ".join(part for part in parts if part)
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def coerce_text_list(value: Any) -> list[str]:
    """Accept lists, tuples or single strings and keep non-blank unique entries."""
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = [value]
    elif isinstance(value, (list, tuple, set)):
        items = value
    else:
        return []
    cleaned: list[str] = []
    for item in items:
        text = coerce_text(item) if not isinstance(item, (list, tuple)) else None
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


class CamelModel(BaseModel):
    """Base model that reads and writes the camelCase wire layout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ContactInfo(CamelModel):
    email: str | None = None
    linkedin: str | None = None
    twitter: str | None = None
    website: str | None = None
    other: list[str] = Field(default_factory=list)

    @field_validator("email", "linkedin", "twitter", "website", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return coerce_text(value)

    @field_validator("other", mode="before")
    @classmethod
    def _other(cls, value: Any) -> list[str]:
        return coerce_text_list(value)


class InvestorProfile(CamelModel):
    """Investment profile; every field is optional and merged independently."""

    investment_stage: list[str] | None = None
    check_size: str | None = None
    geographic_focus: list[str] | None = None
    portfolio: list[str] | None = None
    investment_philosophy: str | None = None
    funding_source: str | None = None
    exit_expectations: str | None = None
    decision_process: str | None = None
    decision_speed: str | None = None
    reputation: str | None = None
    network: str | None = None
    traction_required: str | None = None
    board_participation: str | None = None

    @field_validator(*PROFILE_LIST_FIELDS, mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        return coerce_text_list(value)

    @field_validator(*PROFILE_TEXT_FIELDS, mode="before")
    @classmethod
    def _texts(cls, value: Any) -> str | None:
        return coerce_text(value)

    def field_count(self) -> int:
        return len(self.model_dump(exclude_none=True))

    def is_empty(self) -> bool:
        return all(not getattr(self, name) for name in PROFILE_FIELDS)

    def is_complete(self) -> bool:
        return all(getattr(self, name) for name in PROFILE_FIELDS)


class Investor(CamelModel):
    """Canonical investor record."""

    id: str
    name: str
    bio: str | None = None
    full_bio: str | None = None
    location: str | None = None
    image: str | None = None
    interests: list[str] = Field(default_factory=list)
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    profile: InvestorProfile | None = None
    source: str = "unknown"
    scraped_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        return coerce_text(value) or ""

    @field_validator("bio", "full_bio", "location", "image", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return coerce_text(value)

    @field_validator("interests", mode="before")
    @classmethod
    def _interests(cls, value: Any) -> list[str]:
        return coerce_text_list(value)

    @field_validator("contact_info", mode="before")
    @classmethod
    def _contact(cls, value: Any) -> Any:
        return value if value is not None else {}

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON layout shared by the cache and the store."""
        return self.model_dump(mode="json", by_alias=True)


class ScrapedInvestor(CamelModel):
    """Candidate record produced by the generative source before identity resolution."""

    name: str | None = None
    source: str = "unknown"
    bio: str | None = None
    full_bio: str | None = None
    location: str | None = None
    image: str | None = None
    raw_text: str = ""
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    interests: list[str] = Field(default_factory=list)
    profile: InvestorProfile | None = None

    @field_validator("name", "bio", "full_bio", "location", "image", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return coerce_text(value)

    @field_validator("source", mode="before")
    @classmethod
    def _source(cls, value: Any) -> str:
        return coerce_text(value) or "unknown"

    @field_validator("raw_text", mode="before")
    @classmethod
    def _raw_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("interests", mode="before")
    @classmethod
    def _interests(cls, value: Any) -> list[str]:
        return coerce_text_list(value)

    @field_validator("contact_info", mode="before")
    @classmethod
    def _contact(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, ContactInfo)) else {}

    @field_validator("profile", mode="before")
    @classmethod
    def _profile(cls, value: Any) -> Any:
        if isinstance(value, (dict, InvestorProfile)):
            return value
        return None


class QueryCacheEntry(BaseModel):
    """Per-query view of the canonical set plus optional provenance text."""

    investors: list[Investor] = Field(default_factory=list)
    raw_response: str | None = None


class SearchResult(BaseModel):
    """Response shape returned by the query orchestrator."""

    investors: list[Investor] = Field(default_factory=list)
    query: str = ""
    total: int = 0
    cached: bool = Field(default=False, description="True when served without a generative call.")
    updating: bool = Field(default=False, description="True when a background refresh was scheduled.")

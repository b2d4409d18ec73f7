"""Identity resolution and merge helpers for investor records.

Every helper here is total: malformed records are filtered or passed through,
never rejected with an exception, because candidates come from a generative
upstream that cannot be fully trusted.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.models.investor import (
    PROFILE_LIST_FIELDS,
    PROFILE_TEXT_FIELDS,
    ContactInfo,
    Investor,
    InvestorProfile,
    ScrapedInvestor,
)

ID_LENGTH = 12
_CONTACT_FIELDS = ("email", "linkedin", "twitter", "website")


@dataclass
class DedupResult:
    unique: list[Investor] = field(default_factory=list)
    duplicates_removed: int = 0
    invalid_removed: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_name(name: Any) -> str:
    """Lower-case and trim a display name; anything that is not a string maps to ''."""
    if not name or not isinstance(name, str):
        return ""
    return name.lower().strip()


def make_id(name: str, source: str) -> str:
    """Deterministic storage id derived from the name and provenance label."""
    digest = hashlib.md5(f"{name}-{source}".encode("utf-8")).hexdigest()
    return digest[:ID_LENGTH]


def completeness(investor: Investor | None) -> int:
    """Tie-breaker score: bio length + extended bio length + populated profile fields."""
    if investor is None:
        return 0
    profile_fields = investor.profile.field_count() if investor.profile else 0
    return len(investor.bio or "") + len(investor.full_bio or "") + profile_fields


def merge_contact(existing: ContactInfo | None, incoming: ContactInfo | None) -> ContactInfo:
    merged: dict[str, Any] = {}
    for name in _CONTACT_FIELDS:
        new_value = getattr(incoming, name, None) if incoming else None
        old_value = getattr(existing, name, None) if existing else None
        merged[name] = new_value or old_value
    merged["other"] = list(existing.other) if existing else []
    return ContactInfo(**merged)


def merge_interests(existing: Iterable[str] | None, incoming: Iterable[str] | None) -> list[str]:
    current = list(existing or [])
    additions = [tag for tag in (incoming or []) if tag]
    if not additions:
        return current
    return list(dict.fromkeys([*current, *additions]))


def merge_profile(
    existing: InvestorProfile | None,
    incoming: InvestorProfile | None,
) -> InvestorProfile | None:
    """Field-by-field merge where non-empty incoming values win."""
    if incoming is None or incoming.is_empty():
        return existing
    if existing is None:
        return incoming
    merged: dict[str, Any] = {}
    for name in PROFILE_LIST_FIELDS:
        new_value = getattr(incoming, name)
        merged[name] = list(new_value) if new_value else getattr(existing, name)
    for name in PROFILE_TEXT_FIELDS:
        merged[name] = getattr(incoming, name) or getattr(existing, name)
    return InvestorProfile(**merged)


def _prefer_longer(existing: str | None, incoming: str | None) -> str | None:
    if incoming and (not existing or len(incoming) > len(existing)):
        return incoming
    return existing


def merge_record(
    existing: Investor,
    incoming: ScrapedInvestor | Investor,
    interests: Iterable[str] | None = None,
    profile: InvestorProfile | None = None,
    now: datetime | None = None,
) -> Investor:
    """Fold a partial record into an existing one without discarding populated data.

    Bio and extended bio use a length heuristic (longer text wins). Location and
    image take the incoming value when present. The id, source and creation
    time of ``existing`` are preserved; ``last_updated`` becomes ``now``.
    """
    return existing.model_copy(
        update={
            "bio": _prefer_longer(existing.bio, incoming.bio),
            "full_bio": _prefer_longer(existing.full_bio, incoming.full_bio),
            "location": incoming.location or existing.location,
            "image": incoming.image or existing.image,
            "interests": merge_interests(existing.interests, interests),
            "profile": merge_profile(existing.profile, profile),
            "contact_info": merge_contact(existing.contact_info, incoming.contact_info),
            "last_updated": now or _utcnow(),
        }
    )


def build_investor(
    candidate: ScrapedInvestor,
    interests: Iterable[str] | None = None,
    now: datetime | None = None,
) -> Investor:
    """Create a brand new canonical record from a validated candidate."""
    timestamp = now or _utcnow()
    name = candidate.name or ""
    profile = candidate.profile if candidate.profile and not candidate.profile.is_empty() else None
    return Investor(
        id=make_id(name, candidate.source),
        name=name,
        bio=candidate.bio,
        full_bio=candidate.full_bio,
        location=candidate.location,
        image=candidate.image,
        interests=merge_interests([], interests),
        contact_info=merge_contact(None, candidate.contact_info),
        profile=profile,
        source=candidate.source,
        scraped_at=timestamp,
        last_updated=timestamp,
    )


def deduplicate(investors: Iterable[Investor | None]) -> DedupResult:
    """Collapse records sharing a normalized name, keeping the most complete one.

    First-seen order is kept. On a collision the later record replaces the kept
    one only when its completeness score is strictly greater.
    """
    result = DedupResult()
    kept: dict[str, Investor] = {}
    for investor in investors:
        key = normalize_name(investor.name) if investor is not None else ""
        if not key:
            result.invalid_removed += 1
            continue
        current = kept.get(key)
        if current is None:
            kept[key] = investor
            continue
        result.duplicates_removed += 1
        if completeness(investor) > completeness(current):
            kept[key] = investor
    result.unique = list(kept.values())
    return result

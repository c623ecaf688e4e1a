"""
Core value types shared by the cache, coalescer and orchestrator.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EducationTrack(Enum):
    """The fixed set of education tracks a search can target."""
    MEDEWERKER_HOVENIER = "Medewerker Hovenier"
    VAKBEKWAAM_HOVENIER = "Vakbekwaam Hovenier"
    MEDEWERKER_GROENE_RUIMTE = "Medewerker Groene Ruimte"
    MEDEWERKER_BLOEMSIERKUNST = "Medewerker Bloemsierkunst"
    VAKBEKWAAM_BLOEMSIERKUNST = "Vakbekwaam Medewerker Bloemsierkunst"

    @classmethod
    def parse(cls, value: Any) -> "EducationTrack":
        """Resolve a track from its display value, case-insensitively."""
        if isinstance(value, cls):
            return value
        text = " ".join(str(value).split()).casefold()
        for track in cls:
            if track.value.casefold() == text:
                return track
        raise ValueError(f"Unknown education track: {value!r}")


class ResultSource(Enum):
    """Where the records in a result came from."""
    FRESH = "fresh"  # Fetched within TTL
    STALE = "stale"  # Past TTL, served because a refresh failed


def normalize_location(location: str) -> str:
    """Trim, collapse inner whitespace and lower-case a location."""
    return " ".join(location.split()).lower()


@dataclass(frozen=True)
class Query:
    """
    Canonical search key.

    Two queries that differ only in casing or whitespace of the location
    compare equal and hash the same, so they share cache entries and
    in-flight fetches.
    """
    education_track: EducationTrack
    location: str
    radius_km: int

    @classmethod
    def normalize(cls, education: Any, location: str, radius_km: int) -> "Query":
        return cls(
            education_track=EducationTrack.parse(education),
            location=normalize_location(location),
            radius_km=int(radius_km),
        )

    @property
    def cache_key(self) -> str:
        """Readable key used in logs and stats."""
        return f"{self.education_track.name}:{self.location}:{self.radius_km}"


@dataclass(frozen=True)
class Contact:
    name: str = ""
    phone: str = ""
    email: str = ""


@dataclass(frozen=True)
class CompanyRecord:
    """A company offering internships, as returned by the source."""
    name: str
    address: str = ""
    city: str = ""
    contact: Contact = field(default_factory=Contact)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "contact": {
                "name": self.contact.name,
                "phone": self.contact.phone,
                "email": self.contact.email,
            },
        }


@dataclass(frozen=True)
class ResultEntry:
    """
    A cached result set with its freshness window.

    Entries are immutable; a refresh replaces the entry instead of
    editing it.
    """
    results: Tuple[CompanyRecord, ...]
    fetched_at: float  # epoch seconds
    expires_at: float
    source: ResultSource = ResultSource.FRESH

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    @property
    def fetched_at_iso(self) -> str:
        return to_iso(self.fetched_at)


def to_iso(timestamp: Optional[float]) -> Optional[str]:
    """Format epoch seconds as an ISO-8601 UTC string with a Z suffix."""
    if timestamp is None:
        return None
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)
    return moment.isoformat() + "Z"

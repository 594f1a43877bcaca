"""Core data types shared by the matching pipeline, geocoding and services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

RawRow = Tuple[str, ...]


class ProviderSource(Enum):
    """Where a provider record (or any fetched payload) came from."""

    CSV_GOVERNMENT = "csv_government"  # CMS Doctors and Clinicians extract
    EXTERNAL_API = "external_api"  # NPI registry, geocoders, AI models
    STATIC_FALLBACK = "static_fallback"  # Bundled reference data


class Urgency(Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @classmethod
    def parse(cls, value) -> "Urgency":
        """Coerce user or model supplied text into an Urgency, defaulting to routine."""
        if isinstance(value, Urgency):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.ROUTINE


@dataclass(frozen=True, slots=True)
class Coordinates:
    lat: float
    lng: float
    accuracy: Optional[float] = None


@dataclass(frozen=True, slots=True)
class Distance:
    km: float
    display_text: str


@dataclass(frozen=True, slots=True)
class TravelTime:
    minutes: int
    display_text: str


@dataclass(slots=True)
class ProviderRecord:
    """A clinician or facility eligible for matching.

    Only ``coordinates`` is expected to change after construction (it is filled
    in lazily by geocoding).
    """

    id: str
    name: str
    credentials: str = ""
    primary_specialty: str = ""
    secondary_specialty: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    coordinates: Optional[Coordinates] = None
    phone: Optional[str] = None
    source: ProviderSource = ProviderSource.CSV_GOVERNMENT
    is_verified_real: bool = True
    facility: Optional[str] = None
    gender: Optional[str] = None
    medical_school: Optional[str] = None
    graduation_year: Optional[int] = None
    experience_years: Optional[int] = None
    rating: Optional[float] = None
    languages: Tuple[str, ...] = ()
    conditions: Tuple[str, ...] = ()
    availability: Optional[str] = None
    telemedicine: bool = False
    insurance: Tuple[str, ...] = ()

    @property
    def location_label(self) -> str:
        return ", ".join(part for part in (self.city, self.state) if part)


@dataclass(slots=True)
class SearchCriteria:
    """Input to the matching pipeline."""

    symptoms: str = ""
    location: Optional[str] = None
    specialty_hint: Optional[str] = None
    insurance: Optional[str] = None
    telemedicine_preferred: bool = False
    urgency: Urgency = Urgency.ROUTINE
    condition: Optional[str] = None
    language_preferences: List[str] = field(default_factory=list)
    user_coordinates: Optional[Coordinates] = None
    travel_mode: str = "driving"

    def __post_init__(self):
        self.urgency = Urgency.parse(self.urgency)


@dataclass(slots=True)
class SpecialtyAnalysis:
    """Which specialties a set of symptoms points to."""

    primary_specialty: Optional[str]
    secondary_specialties: List[str] = field(default_factory=list)
    confidence: str = "low"
    reasoning: str = ""
    urgency: Urgency = Urgency.ROUTINE
    red_flags: List[str] = field(default_factory=list)
    source: ProviderSource = ProviderSource.STATIC_FALLBACK

    @property
    def specialties(self) -> List[str]:
        names = [self.primary_specialty] if self.primary_specialty else []
        names.extend(s for s in self.secondary_specialties if s and s not in names)
        return names


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    """A provider with its match score; never mutated once built."""

    provider: ProviderRecord
    match_score: int
    match_percentage: int
    scoring_factors: Tuple[str, ...] = ()
    distance: Optional[Distance] = None
    travel_time_minutes: Optional[int] = None

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def rating(self) -> Optional[float]:
        return self.provider.rating

    @property
    def source(self) -> ProviderSource:
        return self.provider.source

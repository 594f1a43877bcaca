"""Loaders for the bundled reference tables.

The keyword table, static provider list, medical knowledge base and city
coordinates live as JSON next to this module so they can be extended or
swapped without touching the matching code.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from mediconnect.models import Coordinates, ProviderRecord, ProviderSource, SpecialtyAnalysis, Urgency

logger = logging.getLogger(__name__)

REFERENCE_DIR = Path(__file__).parent / "reference"


@lru_cache(maxsize=None)
def _read_reference(filename: str) -> Any:
    path = REFERENCE_DIR / filename
    if not path.exists():
        raise FileNotFoundError(f"Reference file {path} does not exist")
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


@dataclass(frozen=True, slots=True)
class SpecialtyEntry:
    specialty: str
    aliases: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    secondary: Tuple[str, ...] = ()
    urgent_keywords: Tuple[str, ...] = ()
    equivalents: Tuple[str, ...] = ()

    @property
    def terms(self) -> Tuple[str, ...]:
        return (self.specialty.lower(),) + tuple(a.lower() for a in self.aliases)

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.specialty.lower(),) + tuple(e.lower() for e in self.equivalents)


def mentions(text: str, keyword: str) -> bool:
    """True when ``keyword`` starts a word in ``text``; stems like "dizz" still match "dizzy"."""
    return re.search(r"\b" + re.escape(keyword), text) is not None


def specialty_variants(value: str) -> Tuple[str, ...]:
    """A specialty label plus its parts around a trailing parenthetical.

    "CARDIOVASCULAR DISEASE (CARDIOLOGY)" -> the full label, "cardiovascular disease", "cardiology".
    """
    value = value.strip().lower()
    found = re.match(r"^(.*?)\s*\((.+)\)$", value)
    if not found:
        return (value,)
    return (value, found.group(1).strip(), found.group(2).strip())


class SpecialtyCatalog:
    """Static symptom-keyword to specialty table.

    Entries are checked in table order; the first entry whose keyword appears
    in the symptom text becomes the primary specialty.
    """

    def __init__(self, entries: List[SpecialtyEntry]):
        self._entries = list(entries)
        self._by_name = {e.specialty.lower(): e for e in self._entries}

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "SpecialtyCatalog":
        return cls(
            [
                SpecialtyEntry(
                    specialty=r["specialty"],
                    aliases=tuple(r.get("aliases", ())),
                    keywords=tuple(k.lower() for k in r.get("keywords", ())),
                    secondary=tuple(r.get("secondary", ())),
                    urgent_keywords=tuple(k.lower() for k in r.get("urgent_keywords", ())),
                    equivalents=tuple(r.get("equivalents", ())),
                )
                for r in records
            ]
        )

    @property
    def specialties(self) -> List[str]:
        return [e.specialty for e in self._entries]

    def infer(self, symptoms: Optional[str]) -> List[SpecialtyEntry]:
        text = (symptoms or "").lower()
        if not text.strip():
            return []
        return [e for e in self._entries if any(mentions(text, k) for k in e.keywords)]

    def terms_for(self, specialty: str) -> Tuple[str, ...]:
        """Lower-cased strings that identify ``specialty`` inside a provider's specialty text."""
        entry = self._by_name.get(specialty.strip().lower())
        if entry is None:
            return (specialty.strip().lower(),)
        return entry.terms

    def matches(self, provider_specialty: Optional[str], specialty: str) -> bool:
        if not provider_specialty or not specialty:
            return False
        value = provider_specialty.lower()
        return any(term and term in value for term in self.terms_for(specialty))

    def matches_exactly(self, provider_specialty: Optional[str], specialty: str) -> bool:
        """Case-insensitive equality with ``specialty`` or one of its listed equivalent names.

        Unlike ``matches``, "Cardiac Surgery" is not Cardiology here.
        """
        if not provider_specialty or not specialty:
            return False
        entry = self._by_name.get(specialty.strip().lower())
        names = entry.names if entry is not None else (specialty.strip().lower(),)
        return any(v in names for v in specialty_variants(provider_specialty))

    def analyze(self, symptoms: Optional[str], specialty_hint: Optional[str] = None) -> SpecialtyAnalysis:
        """Keyword-based specialty analysis, used directly and as the AI fallback."""
        matched = self.infer(symptoms)
        hint = (specialty_hint or "").strip() or None
        primary = hint or (matched[0].specialty if matched else None)

        secondary: List[str] = []
        for entry in matched:
            for name in (entry.specialty,) + entry.secondary:
                if name != primary and name not in secondary:
                    secondary.append(name)

        text = (symptoms or "").lower()
        urgent = any(mentions(text, k) for e in matched for k in e.urgent_keywords)

        if hint:
            reasoning = "Specialty requested by patient"
        elif matched:
            reasoning = "Based on symptom keywords"
        else:
            reasoning = "General symptoms - starting with primary care"

        return SpecialtyAnalysis(
            primary_specialty=primary,
            secondary_specialties=secondary,
            confidence="medium" if (matched or hint) else "low",
            reasoning=reasoning,
            urgency=Urgency.URGENT if urgent else Urgency.ROUTINE,
            red_flags=[],
            source=ProviderSource.STATIC_FALLBACK,
        )


@lru_cache(maxsize=None)
def load_specialty_catalog() -> SpecialtyCatalog:
    return SpecialtyCatalog.from_records(_read_reference("specialty_keywords.json"))


def provider_from_mapping(data: Dict[str, Any], source: ProviderSource, verified: bool) -> ProviderRecord:
    coords = data.get("coordinates")
    return ProviderRecord(
        id=str(data["id"]),
        name=data["name"],
        credentials=data.get("credentials", ""),
        primary_specialty=data.get("primary_specialty", ""),
        secondary_specialty=data.get("secondary_specialty"),
        address=data.get("address", ""),
        city=data.get("city", ""),
        state=data.get("state", ""),
        postal_code=data.get("postal_code", ""),
        coordinates=Coordinates(float(coords["lat"]), float(coords["lng"])) if coords else None,
        phone=data.get("phone"),
        source=source,
        is_verified_real=verified,
        facility=data.get("facility"),
        experience_years=data.get("experience_years"),
        rating=data.get("rating"),
        languages=tuple(data.get("languages", ())),
        conditions=tuple(data.get("conditions", ())),
        availability=data.get("availability"),
        telemedicine=bool(data.get("telemedicine", False)),
        insurance=tuple(data.get("insurance", ())),
    )


def load_fallback_providers() -> List[ProviderRecord]:
    """Fresh ProviderRecord instances for the bundled static provider list."""
    return [
        provider_from_mapping(item, ProviderSource.STATIC_FALLBACK, verified=False)
        for item in _read_reference("fallback_providers.json")
    ]


def load_knowledge_base() -> Dict[str, Any]:
    return _read_reference("knowledge_base.json")


def load_city_coordinates() -> Dict[str, Any]:
    return _read_reference("city_coordinates.json")

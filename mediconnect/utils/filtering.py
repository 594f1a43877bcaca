"""Candidate filtering by specialty, location and insurance."""
import logging
from typing import Iterable, List, Optional

from mediconnect.data.reference import SpecialtyCatalog, load_specialty_catalog
from mediconnect.models import ProviderRecord, SearchCriteria, SpecialtyAnalysis
from mediconnect.utils.addressing import location_tokens, normalize_state

logger = logging.getLogger(__name__)


def requested_specialties(
    criteria: SearchCriteria,
    analysis: Optional[SpecialtyAnalysis] = None,
    catalog: Optional[SpecialtyCatalog] = None,
) -> List[str]:
    """Specialties a search asks for: the hint, the analysis' primary, then keyword-inferred ones."""
    catalog = catalog or load_specialty_catalog()
    names: List[str] = []
    candidates = [criteria.specialty_hint]
    if analysis is not None:
        candidates.append(analysis.primary_specialty)
    candidates.extend(entry.specialty for entry in catalog.infer(criteria.symptoms))
    for name in candidates:
        name = (name or "").strip()
        if name and name.lower() not in (n.lower() for n in names):
            names.append(name)
    return names


def matches_specialty(record: ProviderRecord, specialties: List[str], catalog: SpecialtyCatalog) -> bool:
    return any(
        catalog.matches(record.primary_specialty, s) or catalog.matches(record.secondary_specialty, s)
        for s in specialties
    )


def matches_location(record: ProviderRecord, location: Optional[str]) -> bool:
    """State equality (names mapped to codes) or city containment for tokens longer than two characters."""
    tokens = location_tokens(location)
    if not tokens:
        return True
    state = normalize_state(record.state)
    city = (record.city or "").lower()
    for token in tokens:
        if state and normalize_state(token) == state:
            return True
        if len(token) > 2 and city and token.lower() in city:
            return True
    return False


def accepts_insurance(record: ProviderRecord, insurance: Optional[str]) -> bool:
    wanted = (insurance or "").strip().lower()
    if not wanted or not record.insurance:
        return True
    return any(wanted in plan.lower() or plan.lower() in wanted for plan in record.insurance)


def filter_candidates(
    records: Iterable[ProviderRecord],
    criteria: SearchCriteria,
    analysis: Optional[SpecialtyAnalysis] = None,
    catalog: Optional[SpecialtyCatalog] = None,
) -> List[ProviderRecord]:
    """Keep the records that satisfy every requested constraint.

    Args:
        records: Normalized provider records.
        criteria: Search input; empty fields do not constrain.
        analysis: Optional specialty analysis whose primary specialty joins the
            specialty hint and the keyword-inferred specialties.
        catalog: Keyword table; defaults to the bundled one.

    Returns:
        list[ProviderRecord]: Matching records in input order. May be empty;
            the caller decides whether to fall back to other data.
    """
    catalog = catalog or load_specialty_catalog()
    specialties = requested_specialties(criteria, analysis, catalog)

    kept = []
    for record in records:
        if specialties and not matches_specialty(record, specialties, catalog):
            continue
        if criteria.location and not matches_location(record, criteria.location):
            continue
        if not accepts_insurance(record, criteria.insurance):
            continue
        kept.append(record)

    logger.debug(f"Filter kept {len(kept)} providers for specialties={specialties} location={criteria.location!r}")
    return kept


def get_unique_specialties(records: Iterable[ProviderRecord]) -> List[str]:
    """Sorted primary and secondary specialty names present in ``records``."""
    unique = set()
    for record in records:
        for value in (record.primary_specialty, record.secondary_specialty):
            if value and value.strip():
                unique.add(value.strip())
    return sorted(unique)

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from mediconnect.data.ingestion import ProviderDataManager
from mediconnect.data.reference import SpecialtyCatalog, load_specialty_catalog
from mediconnect.models import ProviderSource, ScoredCandidate, SearchCriteria, SpecialtyAnalysis
from mediconnect.services.ai_diagnosis import AIDiagnosisService
from mediconnect.services.backend import BackendClient, create_backend_client
from mediconnect.utils.config import get_api_config, get_matching_config
from mediconnect.utils.filtering import filter_candidates, get_unique_specialties
from mediconnect.utils.geocoding import GeocodeResult, Geocoder
from mediconnect.utils.resilience import ResilientFetcher
from mediconnect.utils.scoring import DEFAULT_WEIGHTS, ScoringWeights, score_candidates

__all__ = [
    "MatchReport",
    "Services",
    "analyze_criteria",
    "build_services",
    "find_matching_providers",
    "get_unique_specialties",
    "run_provider_search",
]

logger = logging.getLogger(__name__)

# Geocodes below this confidence (the "Central US" default) are not used for distances
MIN_DISTANCE_CONFIDENCE = 0.5


@dataclass
class MatchReport:
    """Result of one provider search."""

    candidates: List[ScoredCandidate]
    analysis: SpecialtyAnalysis
    data_source: str
    provenance: ProviderSource
    used_fallback_data: bool
    total_matches: int
    failures: Tuple[str, ...] = ()
    user_location: Optional[GeocodeResult] = None


@dataclass
class Services:
    """Every collaborator the pipeline and the pages need, built once per process."""

    data_manager: ProviderDataManager
    geocoder: Geocoder
    ai_service: AIDiagnosisService
    backend: BackendClient
    catalog: SpecialtyCatalog
    matching: Dict[str, Any] = field(default_factory=dict)


def build_services(config: Optional[Dict[str, Dict[str, Any]]] = None, session: Optional[requests.Session] = None):
    """Construct the pipeline collaborators.

    Args:
        config: Optional overrides keyed by 'cms', 'geocoding', 'ai', 'supabase'
            and 'matching'; missing groups are read from secrets/environment.
        session: Shared HTTP session for the CMS, NPI registry and Supabase calls.

    Returns:
        Services
    """
    config = config or {}
    session = session or requests.Session()
    catalog = load_specialty_catalog()
    return Services(
        data_manager=ProviderDataManager(config.get("cms") or get_api_config("cms"), session=session),
        geocoder=Geocoder(config.get("geocoding") or get_api_config("geocoding")),
        ai_service=AIDiagnosisService(config.get("ai") or get_api_config("ai"), catalog=catalog),
        backend=create_backend_client(config.get("supabase") or get_api_config("supabase"), session=session),
        catalog=catalog,
        matching=config.get("matching") or get_matching_config(),
    )


def analyze_criteria(
    criteria: SearchCriteria,
    ai_service: Optional[AIDiagnosisService] = None,
    catalog: Optional[SpecialtyCatalog] = None,
) -> SpecialtyAnalysis:
    """Specialty analysis for a search: the AI advisor when supplied, else the keyword table.

    An explicit specialty hint always becomes the primary specialty.
    """
    catalog = catalog or load_specialty_catalog()
    hint = (criteria.specialty_hint or "").strip()

    if ai_service is None or not (criteria.symptoms or "").strip():
        return catalog.analyze(criteria.symptoms, hint or None)

    analysis = ai_service.analyze_specialties(criteria.symptoms, criteria.condition)
    if hint and analysis.primary_specialty != hint:
        secondary = [s for s in [analysis.primary_specialty] + analysis.secondary_specialties if s and s != hint]
        analysis = dataclasses.replace(analysis, primary_specialty=hint, secondary_specialties=secondary)
    return analysis


def _with_user_coordinates(criteria: SearchCriteria, geocoder: Optional[Geocoder]):
    if geocoder is None or criteria.user_coordinates is not None or not (criteria.location or "").strip():
        return criteria, None
    located = geocoder.geocode(criteria.location)
    if located.confidence < MIN_DISTANCE_CONFIDENCE:
        return criteria, located
    return dataclasses.replace(criteria, user_coordinates=located.coordinates), located


def run_provider_search(
    criteria: SearchCriteria,
    data_manager: ProviderDataManager,
    *,
    ai_service: Optional[AIDiagnosisService] = None,
    geocoder: Optional[Geocoder] = None,
    catalog: Optional[SpecialtyCatalog] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    limit: Optional[int] = None,
) -> MatchReport:
    """Run the complete matching workflow.

    1. Specialty analysis (AI advisor or keyword table)
    2. Provider loading through the source fallback chain
    3. Filtering by specialty, location and insurance
    4. If nothing matched in live data, the static dataset through the same filter
    5. Scoring and ranking, with distances when the location can be geocoded

    Args:
        criteria: Search input.
        data_manager: Provider loader.
        ai_service: Optional AI advisor for the specialty analysis.
        geocoder: Optional geocoder used to attach distances.
        catalog: Keyword table; defaults to the bundled one.
        weights: Scoring weights.
        limit: Maximum number of candidates to return.

    Returns:
        MatchReport
    """
    catalog = catalog or load_specialty_catalog()
    analysis = analyze_criteria(criteria, ai_service, catalog)
    criteria, located = _with_user_coordinates(criteria, geocoder)

    outcome = data_manager.load_providers(criteria, analysis.primary_specialty)
    data_source = outcome.strategy
    provenance = outcome.provenance
    used_fallback = outcome.used_fallback
    failures = tuple(str(f) for f in outcome.failures)

    matches = filter_candidates(outcome.payload, criteria, analysis, catalog)
    if not matches and not used_fallback:
        logger.info(f"No matches in {data_source} data; trying the static provider dataset")
        matches = filter_candidates(data_manager.load_static_providers(), criteria, analysis, catalog)
        data_source = ResilientFetcher.FALLBACK_STRATEGY
        provenance = ProviderSource.STATIC_FALLBACK
        used_fallback = True

    candidates = score_candidates(matches, criteria, analysis, weights, catalog)
    total = len(candidates)
    if limit:
        candidates = candidates[:limit]

    logger.info(f"Provider search returned {total} matches from {data_source} (showing {len(candidates)})")
    return MatchReport(
        candidates=candidates,
        analysis=analysis,
        data_source=data_source,
        provenance=provenance,
        used_fallback_data=used_fallback,
        total_matches=total,
        failures=failures,
        user_location=located,
    )


def find_matching_providers(
    criteria: SearchCriteria, data_manager: ProviderDataManager, **kwargs
) -> List[ScoredCandidate]:
    """Ranked candidates for ``criteria``; see ``run_provider_search`` for the options."""
    return run_provider_search(criteria, data_manager, **kwargs).candidates

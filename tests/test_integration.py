"""End-to-end tests for the provider search workflow (CSV -> filter -> score)."""
import pytest

from mediconnect.app_logic import (
    MatchReport,
    analyze_criteria,
    build_services,
    find_matching_providers,
    run_provider_search,
)
from mediconnect.data.ingestion import ProviderDataManager
from mediconnect.data.reference import load_specialty_catalog
from mediconnect.models import ProviderSource, SearchCriteria, SpecialtyAnalysis, Urgency
from mediconnect.services.backend import InMemoryBackend
from mediconnect.utils.geocoding import Geocoder
from mediconnect.utils.resilience import ResilientFetcher


@pytest.fixture
def manager(tmp_path, cms_csv, cms_config):
    path = tmp_path / "dac.csv"
    path.write_text(cms_csv, encoding="utf-8")
    return ProviderDataManager(dict(cms_config, csv_path=str(path)), as_of_year=2024)


class StubAIService:
    def __init__(self, analysis):
        self.analysis = analysis
        self.calls = []

    def analyze_specialties(self, symptoms, condition=None, age=None, gender=None):
        self.calls.append((symptoms, condition))
        return self.analysis


def test_cardiology_search_in_virginia_returns_only_matching_provider(manager):
    criteria = SearchCriteria(specialty_hint="Cardiology", location="VA")
    report = run_provider_search(criteria, manager)

    assert isinstance(report, MatchReport)
    assert [c.name for c in report.candidates] == ["Alice Adams"]
    assert report.data_source == "cms_csv"
    assert report.provenance == ProviderSource.CSV_GOVERNMENT
    assert not report.used_fallback_data
    assert report.total_matches == 1
    assert report.candidates[0].match_score == 30 + 15 + 8


def test_symptom_search_infers_specialty(manager):
    report = run_provider_search(SearchCriteria(symptoms="itchy rash on both arms"), manager)
    assert report.analysis.primary_specialty == "Dermatology"
    assert [c.name for c in report.candidates] == ["Derek Dunn"]


def test_no_live_match_uses_static_dataset(manager):
    criteria = SearchCriteria(specialty_hint="Dentistry", location="Fairfax, VA")
    report = run_provider_search(criteria, manager)

    assert report.used_fallback_data
    assert report.data_source == ResilientFetcher.FALLBACK_STRATEGY
    assert report.provenance == ProviderSource.STATIC_FALLBACK
    assert [c.name for c in report.candidates] == ["Dr. Sarah Chen, DDS"]
    assert report.candidates[0].provider.is_verified_real is False


def test_no_match_anywhere_returns_empty_report(manager):
    report = run_provider_search(SearchCriteria(specialty_hint="Neurology", location="Alaska"), manager)
    assert report.candidates == []
    assert report.total_matches == 0


def test_distances_attached_when_location_geocodes(manager, fake_geocoder, geocoding_config):
    geocoder = Geocoder(
        geocoding_config, nominatim=fake_geocoder({"Fairfax, VA": (38.8462, -77.3064, "Fairfax, Virginia")})
    )
    criteria = SearchCriteria(specialty_hint="Dentistry", location="Fairfax, VA", travel_mode="driving")
    report = run_provider_search(criteria, manager, geocoder=geocoder)

    assert report.user_location.confidence == 0.8
    best = report.candidates[0]
    assert best.distance is not None
    assert best.distance.km < 2
    assert best.travel_time_minutes is not None


def test_low_confidence_geocode_is_not_used_for_distances(manager, fake_geocoder, geocoding_config):
    geocoder = Geocoder(geocoding_config, nominatim=fake_geocoder())
    criteria = SearchCriteria(specialty_hint="Dentistry", location="Fairfax, VA")
    report = run_provider_search(criteria, manager, geocoder=geocoder)

    assert report.user_location.provenance == ProviderSource.STATIC_FALLBACK
    assert report.candidates[0].distance is not None  # city-table match is approximate but usable

    report = run_provider_search(SearchCriteria(specialty_hint="Dentistry", location="VA"), manager, geocoder=geocoder)
    assert report.user_location.confidence < 0.5
    assert all(c.distance is None for c in report.candidates)


def test_limit_truncates_but_total_counts_all(manager):
    report = run_provider_search(SearchCriteria(specialty_hint="Cardiology"), manager, limit=1)
    assert len(report.candidates) == 1
    assert report.total_matches == 2


def test_find_matching_providers_returns_candidates(manager):
    candidates = find_matching_providers(SearchCriteria(specialty_hint="Cardiology", location="NY"), manager)
    assert [c.name for c in candidates] == ["Nina Nolan"]


def test_analyze_criteria_prefers_hint_over_ai_primary():
    ai = StubAIService(
        SpecialtyAnalysis(
            primary_specialty="Internal Medicine",
            secondary_specialties=["Pulmonology"],
            urgency=Urgency.URGENT,
            source=ProviderSource.EXTERNAL_API,
        )
    )
    criteria = SearchCriteria(symptoms="cough for weeks", specialty_hint="Pulmonology", condition="Asthma")
    analysis = analyze_criteria(criteria, ai, load_specialty_catalog())

    assert ai.calls == [("cough for weeks", "Asthma")]
    assert analysis.primary_specialty == "Pulmonology"
    assert analysis.secondary_specialties == ["Internal Medicine"]
    assert analysis.urgency == Urgency.URGENT


def test_analyze_criteria_without_symptoms_skips_ai():
    ai = StubAIService(SpecialtyAnalysis(primary_specialty="Neurology"))
    analysis = analyze_criteria(SearchCriteria(specialty_hint="Cardiology"), ai)
    assert ai.calls == []
    assert analysis.primary_specialty == "Cardiology"


def test_ai_analysis_drives_filtering(manager):
    ai = StubAIService(SpecialtyAnalysis(primary_specialty="Cardiology", source=ProviderSource.EXTERNAL_API))
    report = run_provider_search(SearchCriteria(symptoms="fluttering feeling", location="VA"), manager, ai_service=ai)
    assert [c.name for c in report.candidates] == ["Alice Adams"]


def test_build_services_with_explicit_configuration(cms_config, geocoding_config):
    services = build_services(
        {
            "cms": cms_config,
            "geocoding": geocoding_config,
            "ai": {"api_key": "", "models": ["model-a"]},
            "supabase": {"url": "", "anon_key": ""},
            "matching": {"max_results": 5, "travel_mode": "walking"},
        }
    )
    assert isinstance(services.backend, InMemoryBackend)
    assert not services.ai_service.configured
    assert services.matching["max_results"] == 5
    assert "Cardiology" in services.catalog.specialties
    assert services.data_manager.load_providers().used_fallback

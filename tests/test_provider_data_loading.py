"""Tests for provider loading across CMS file, NPI registry and the static dataset."""
import pytest
import requests

from mediconnect.data.ingestion import PLAIN_TEXT_ACCEPT, ProviderDataManager, npi_result_to_record
from mediconnect.models import ProviderSource, SearchCriteria

CSV_URL = "https://data.cms.gov/provider-data/DAC_NationalDownloadableFile.csv"
NPI_URL = "https://npiregistry.cms.hhs.gov/api/"

NPI_RESULT = {
    "number": 1999999999,
    "basic": {"first_name": "JANE", "last_name": "DOE", "credential": "M.D.", "gender": "F"},
    "addresses": [
        {"address_purpose": "MAILING", "address_1": "PO Box 1", "city": "RICHMOND", "state": "VA"},
        {
            "address_purpose": "LOCATION",
            "address_1": "200 Heart Way",
            "city": "FAIRFAX",
            "state": "VA",
            "postal_code": "220301234",
            "telephone_number": "703-555-0100",
        },
    ],
    "taxonomies": [
        {"desc": "Internal Medicine", "primary": False},
        {"desc": "Cardiovascular Disease", "primary": True},
    ],
}


@pytest.fixture
def csv_file(tmp_path, cms_csv):
    path = tmp_path / "dac.csv"
    path.write_text(cms_csv, encoding="utf-8")
    return path


def test_local_file_is_loaded_and_normalized(cms_config, csv_file):
    manager = ProviderDataManager(dict(cms_config, csv_path=str(csv_file)), as_of_year=2024)
    outcome = manager.load_providers()

    assert outcome.strategy == "cms_csv"
    assert outcome.provenance == ProviderSource.CSV_GOVERNMENT
    assert [r.name for r in outcome.payload] == ["Alice Adams", "Derek Dunn", "Nina Nolan"]
    assert outcome.payload[0].experience_years == 24
    status = manager.get_data_status()
    assert status["cms_loaded"] is True
    assert status["cms_records"] == 3
    assert status["last_parse_malformed"] == 0


def test_missing_sources_fall_back_to_static_dataset(cms_config, tmp_path):
    manager = ProviderDataManager(dict(cms_config, csv_path=str(tmp_path / "missing.csv")))
    outcome = manager.load_providers()

    assert outcome.used_fallback
    assert outcome.payload
    assert all(r.source == ProviderSource.STATIC_FALLBACK for r in outcome.payload)
    assert [f.strategy for f in outcome.failures] == ["cms_csv"]


def test_unconfigured_cms_source_falls_back(cms_config):
    outcome = ProviderDataManager(cms_config).load_providers()
    assert outcome.used_fallback
    assert "No CMS extract path or URL configured" in outcome.failures[0].reason


def test_header_only_file_falls_back(cms_config, tmp_path, cms_header):
    path = tmp_path / "empty.csv"
    path.write_text(cms_header + "\n", encoding="utf-8")
    outcome = ProviderDataManager(dict(cms_config, csv_path=str(path))).load_providers()
    assert outcome.used_fallback
    assert "EmptyInputError" in outcome.failures[0].reason


def test_cache_buster_fetch_after_standard_fetch_fails(cms_config, cms_csv, fake_session, fake_response):
    session = fake_session([fake_response(status_code=503), fake_response(text=cms_csv)])
    manager = ProviderDataManager(dict(cms_config, csv_url=CSV_URL), session=session)

    text_outcome = manager.load_cms_text()

    assert text_outcome.strategy == "cache_buster_fetch"
    assert text_outcome.payload == cms_csv
    first, second = session.calls
    assert first.params is None
    assert "t" in second.params
    assert second.timeout == 1


def test_plain_text_fetch_is_last_http_approach(cms_config, cms_csv, fake_session, fake_response):
    session = fake_session(
        [requests.Timeout("slow"), fake_response(text="   "), fake_response(text=cms_csv)]
    )
    manager = ProviderDataManager(dict(cms_config, csv_url=CSV_URL), session=session)

    outcome = manager.load_providers()

    assert outcome.strategy == "cms_csv"
    assert len(outcome.payload) == 3
    assert session.calls[-1].headers == {"Accept": PLAIN_TEXT_ACCEPT}


def test_local_file_preferred_over_url(cms_config, csv_file, fake_session):
    session = fake_session()
    manager = ProviderDataManager(dict(cms_config, csv_path=str(csv_file), csv_url=CSV_URL), session=session)
    assert manager.load_cms_text().strategy == "local_file"
    assert session.calls == []


def test_parsed_records_are_reused_until_cache_cleared(cms_config, cms_csv, fake_session, fake_response):
    session = fake_session([fake_response(text=cms_csv), fake_response(text=cms_csv)])
    manager = ProviderDataManager(dict(cms_config, csv_url=CSV_URL), session=session)

    manager.load_providers()
    manager.load_providers()
    assert len(session.calls) == 1

    manager.clear_cache()
    assert manager.get_data_status()["cms_loaded"] is False
    manager.load_providers()
    assert len(session.calls) == 2


def test_npi_registry_used_when_cms_unavailable(cms_config, fake_session, fake_response):
    session = fake_session([fake_response(json_data={"result_count": 1, "results": [NPI_RESULT]})])
    config = dict(cms_config, npi_registry_enabled=True, npi_registry_url=NPI_URL)
    manager = ProviderDataManager(config, session=session)

    outcome = manager.load_providers(SearchCriteria(location="Fairfax, VA"), "Cardiology")

    assert outcome.strategy == "npi_registry"
    assert outcome.provenance == ProviderSource.EXTERNAL_API
    [record] = outcome.payload
    assert record.name == "Jane Doe"
    [call] = session.calls
    assert call.url == NPI_URL
    assert call.params == {
        "version": "2.1",
        "limit": 20,
        "city": "Fairfax",
        "state": "VA",
        "taxonomy_description": "Cardiology",
    }


def test_npi_registry_errors_fall_back(cms_config, fake_session, fake_response):
    session = fake_session([fake_response(json_data={"Errors": [{"description": "No valid search criteria"}]})])
    config = dict(cms_config, npi_registry_enabled=True, npi_registry_url=NPI_URL)
    outcome = ProviderDataManager(config, session=session).load_providers(SearchCriteria(location="VA"))
    assert outcome.used_fallback
    assert [f.strategy for f in outcome.failures] == ["cms_csv", "npi_registry"]


def test_npi_registry_skipped_without_search_terms(cms_config, fake_session):
    session = fake_session()
    config = dict(cms_config, npi_registry_enabled=True, npi_registry_url=NPI_URL)
    outcome = ProviderDataManager(config, session=session).load_providers(SearchCriteria())
    assert outcome.used_fallback
    assert session.calls == []


def test_npi_query_params(cms_config):
    manager = ProviderDataManager(cms_config)
    assert manager.npi_query_params(SearchCriteria(location="Boston, Massachusetts 02115")) == {
        "version": "2.1",
        "limit": 20,
        "city": "Boston",
        "state": "MA",
    }
    assert manager.npi_query_params(SearchCriteria(specialty_hint="Dermatology")) == {
        "version": "2.1",
        "limit": 20,
        "taxonomy_description": "Dermatology",
    }
    assert manager.npi_query_params(SearchCriteria()) is None


def test_npi_result_to_record_prefers_location_address():
    record = npi_result_to_record(NPI_RESULT)
    assert record.id == "npi-1999999999"
    assert record.credentials == "M.D."
    assert record.primary_specialty == "Cardiovascular Disease"
    assert record.secondary_specialty == "Internal Medicine"
    assert record.address == "200 Heart Way"
    assert record.city == "Fairfax"
    assert record.state == "VA"
    assert record.postal_code == "22030"
    assert record.phone == "703-555-0100"
    assert record.source == ProviderSource.EXTERNAL_API


def test_npi_organization_result():
    record = npi_result_to_record(
        {
            "number": "1555",
            "basic": {"organization_name": "Fairfax Clinic"},
            "addresses": [{"address_purpose": "LOCATION", "city": "FAIRFAX", "state": "VA"}],
            "taxonomies": [],
        }
    )
    assert record.name == "Fairfax Clinic"
    assert record.facility is None
    assert record.primary_specialty == ""


def test_npi_result_without_name_is_dropped():
    assert npi_result_to_record({"basic": {}, "addresses": [], "taxonomies": []}) is None

import pytest

from ofdb_import.core.errors import AmbiguousAddress, NoResult, ProviderError
from ofdb_import.core.geocoding import GeocodingEnricher, pick_candidate
from ofdb_import.models import GeocodeCandidate, PlaceRecord
from ofdb_import.vendors.opencage import OpenCageError

ADDRESS = "Hauptstr. 1, 10115 Berlin, Germany"


@pytest.fixture
def record():
    return PlaceRecord(
        title="Bio Bakery",
        description="Organic bread",
        street="Hauptstr. 1",
        zip="10115",
        city="Berlin",
        country="Germany",
        license="CC0-1.0",
    )


def test_enrich_fills_in_coordinates(geocoder, record):
    geocoder.answers[ADDRESS] = [(52.5, 13.4, 9)]

    enriched = GeocodingEnricher(geocoder).enrich(record)

    assert (enriched.lat, enriched.lng) == (52.5, 13.4)
    assert enriched.title == record.title
    assert geocoder.queries == [ADDRESS]


def test_enrich_skips_records_with_coordinates(geocoder, record):
    located = record.with_coordinates(48.1, 11.5)

    assert GeocodingEnricher(geocoder).enrich(located) is located
    assert geocoder.queries == []


def test_enrich_without_candidates(geocoder, record):
    with pytest.raises(NoResult):
        GeocodingEnricher(geocoder).enrich(record)


def test_enrich_without_address(geocoder):
    with pytest.raises(NoResult):
        GeocodingEnricher(geocoder).enrich(PlaceRecord(title="Nowhere"))
    assert geocoder.queries == []


def test_enrich_wraps_provider_errors(geocoder, record):
    geocoder.error = OpenCageError("quota exceeded")

    with pytest.raises(ProviderError):
        GeocodingEnricher(geocoder).enrich(record)


def test_enrich_keeps_provider_rank(geocoder, record):
    geocoder.answers[ADDRESS] = [(52.0, 13.0, 6), (52.5, 13.4, 9), (53.0, 14.0, 10)]

    enriched = GeocodingEnricher(geocoder).enrich(record)

    assert (enriched.lat, enriched.lng) == (52.0, 13.0)


def test_enrich_takes_first_candidate_above_threshold(geocoder, record):
    geocoder.answers[ADDRESS] = [(52.0, 13.0, 4), (52.5, 13.4, 7), (53.0, 14.0, 9)]

    enriched = GeocodingEnricher(geocoder, min_confidence=5).enrich(record)

    assert (enriched.lat, enriched.lng) == (52.5, 13.4)


def test_pick_candidate_ambiguous_below_threshold():
    candidates = [GeocodeCandidate(52.0, 13.0, 3), GeocodeCandidate(48.0, 11.0, 2)]

    with pytest.raises(AmbiguousAddress):
        pick_candidate(candidates, min_confidence=5)


def test_pick_candidate_single_weak_candidate_is_no_result():
    with pytest.raises(NoResult):
        pick_candidate([GeocodeCandidate(52.0, 13.0, 3)], min_confidence=5)


def test_pick_candidate_ignores_invalid_coordinates():
    candidates = [GeocodeCandidate(120.0, 13.0, 10), GeocodeCandidate(52.0, 13.0, 1)]

    assert pick_candidate(candidates).lat == 52.0

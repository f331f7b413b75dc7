from datetime import date

import pytest

from ofdb_import.etl import transform
from ofdb_import.models import PlaceRecord


@pytest.fixture
def record():
    return PlaceRecord(
        title="Bio Bakery",
        description="Organic bread",
        lat=52.5,
        lng=13.4,
        city="Berlin",
        contact_email="info@bakery.example",
        contact_phone="+49 30 123",
        founded_on=date(2004, 5, 1),
        tags=("bio", "bread"),
        license="CC0-1.0",
    )


def test_to_new_place_uses_catalog_field_names(record):
    body = transform.to_new_place(record)

    assert body["email"] == "info@bakery.example"
    assert body["telephone"] == "+49 30 123"
    assert body["founded_on"] == "2004-05-01"
    assert body["tags"] == ["bio", "bread"]
    assert body["license"] == "CC0-1.0"
    assert "version" not in body


def test_to_update_place_carries_categories_and_links(record):
    base_entry = {"categories": ["2cd00bebec0c48ba9db761da48678134"], "custom": [{"url": "https://x.example"}]}

    body = transform.to_update_place(record, 6, base_entry=base_entry)

    assert body["version"] == 6
    assert "license" not in body
    assert body["categories"] == ["2cd00bebec0c48ba9db761da48678134"]
    assert body["links"] == [{"url": "https://x.example"}]


def test_entry_to_record_maps_catalog_entry():
    entry = {
        "id": "abc",
        "version": 5,
        "title": "Old title",
        "description": "d",
        "lat": "52.5",
        "lng": 13.4,
        "email": "a@b.example",
        "telephone": "123",
        "founded_on": "not a date",
        "tags": ["x"],
        "license": "CC0-1.0",
    }

    record = transform.entry_to_record(entry)

    assert record.id == "abc"
    assert record.version == 5
    assert record.lat == 52.5
    assert record.contact_email == "a@b.example"
    assert record.contact_phone == "123"
    assert record.founded_on is None
    assert record.tags == ("x",)


def test_haversine_m_is_roughly_right():
    # one thousandth of a degree of latitude is about 111 meters
    assert transform.haversine_m(52.5, 13.4, 52.501, 13.4) == pytest.approx(111.2, abs=0.5)
    assert transform.haversine_m(52.5, 13.4, 52.5, 13.4) == 0


def test_to_duplicate_candidates_keeps_every_result(record):
    results = [
        {"id": "a", "title": "Bio Bakery", "lat": 52.5001, "lng": 13.4},
        {"id": "b", "title": "Bakery Bio", "distance": 3.5},
        {"title": "no id"},
    ]

    candidates = transform.to_duplicate_candidates(results, record)

    assert [c.id for c in candidates] == ["a", "b", ""]
    assert candidates[2].title == "no id"
    assert candidates[0].distance == pytest.approx(11.1, abs=0.2)
    assert candidates[1].distance == 3.5

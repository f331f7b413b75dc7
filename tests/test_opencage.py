import pytest
import requests

from ofdb_import.vendors import opencage


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []
        self.error = None

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(opencage, "_SESSION", session)
    return session


def test_geocode_success(patch_session):
    patch_session.response = DummyResponse(
        payload={
            "status": {"code": 200, "message": "OK"},
            "results": [
                {"geometry": {"lat": 52.5, "lng": 13.4}, "confidence": 9, "formatted": "Berlin"},
                {"geometry": {}, "confidence": 10},
            ],
        }
    )

    candidates = opencage.geocode("Hauptstr. 1, 10115 Berlin", "key")

    assert len(candidates) == 1
    assert (candidates[0].lat, candidates[0].lng, candidates[0].confidence) == (52.5, 13.4, 9)
    url, params, timeout = patch_session.calls[0]
    assert url.endswith("/geocode/v1/json")
    assert params["q"] == "Hauptstr. 1, 10115 Berlin"
    assert params["key"] == "key"
    assert timeout == 10


def test_geocode_no_results(patch_session):
    patch_session.response = DummyResponse(payload={"status": {"code": 200}, "results": []})

    assert opencage.geocode("Nowhere", "key") == []


def test_geocode_error_status(patch_session):
    patch_session.response = DummyResponse(status_code=402, payload={"status": {"code": 402, "message": "quota"}})

    with pytest.raises(opencage.OpenCageError, match="quota"):
        opencage.geocode("Berlin", "key")


def test_geocode_requires_key(patch_session):
    with pytest.raises(opencage.OpenCageError):
        opencage.geocode("Berlin", "")
    assert patch_session.calls == []


def test_geocode_wraps_transport_errors(patch_session):
    patch_session.error = requests.ConnectionError("boom")

    with pytest.raises(opencage.OpenCageError):
        opencage.geocode("Berlin", "key")

"""In-memory stand-ins for the catalog and the geocoding provider."""

import copy

from ofdb_import.etl.transform import haversine_m
from ofdb_import.models import GeocodeCandidate
from ofdb_import.vendors.ofdb import CatalogConflict, CatalogNotFound, CatalogUnauthorized


class FakeCatalog:
    """Catalog whose duplicate check flags entries within ``radius_m`` meters."""

    def __init__(self, radius_m=20.0):
        self.radius_m = radius_m
        self.entries = {}
        self.calls = []
        self.authorized = True
        self.create_error = None
        self._counter = 0

    def add_entry(self, place_id, title, lat, lng, version=1, **extra):
        entry = {"id": place_id, "title": title, "lat": lat, "lng": lng, "version": version, **extra}
        self.entries[place_id] = entry
        return entry

    def search_duplicates(self, new_place):
        self.calls.append(("search_duplicates", new_place["title"]))
        return [
            {"id": entry["id"], "title": entry["title"], "lat": entry["lat"], "lng": entry["lng"]}
            for entry in self.entries.values()
            if haversine_m(new_place["lat"], new_place["lng"], entry["lat"], entry["lng"]) <= self.radius_m
        ]

    def create_place(self, new_place):
        self.calls.append(("create_place", new_place["title"]))
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        place_id = f"new-{self._counter}"
        self.entries[place_id] = {**new_place, "id": place_id, "version": 1}
        return place_id

    def fetch_entry(self, place_id):
        self.calls.append(("fetch_entry", place_id))
        if place_id not in self.entries:
            raise CatalogNotFound(f"no entry with id {place_id}", 404)
        return copy.deepcopy(self.entries[place_id])

    def update_place(self, place_id, body):
        self.calls.append(("update_place", place_id))
        current = self.entries[place_id]
        if body["version"] != current["version"] + 1:
            raise CatalogConflict("version is outdated", 409)
        self.entries[place_id] = {**current, **body, "id": place_id}
        return place_id

    def review_places(self, ids, status, comment=None):
        ids = list(ids)
        self.calls.append(("review_places", tuple(ids), status))
        if not self.authorized:
            raise CatalogUnauthorized("moderation rights required", 403)
        for place_id in ids:
            self.entries[place_id]["review"] = {"status": status, "comment": comment}

    def call_names(self):
        return [name for name, *_ in self.calls]


class FakeGeocoder:
    """Callable geocoder answering from a fixed address table."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.queries = []
        self.error = None

    def __call__(self, address):
        self.queries.append(address)
        if self.error is not None:
            raise self.error
        return [GeocodeCandidate(lat, lng, confidence) for lat, lng, confidence in self.answers.get(address, [])]

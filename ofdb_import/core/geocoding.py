"""Fill in missing coordinates of place records from a geocoding provider."""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

import requests

from ofdb_import.core.errors import AmbiguousAddress, NoResult, ProviderError
from ofdb_import.models import GeocodeCandidate, PlaceRecord, valid_coordinates
from ofdb_import.vendors.opencage import OpenCageError

logger = logging.getLogger(__name__)

Geocode = Callable[[str], List[GeocodeCandidate]]


def pick_candidate(candidates: Sequence[GeocodeCandidate], min_confidence: int = 0) -> GeocodeCandidate:
    """Choose the highest-ranked candidate reaching ``min_confidence``.

    Candidates are in the provider's rank order; coordinates are never averaged.
    """
    usable = [c for c in candidates if valid_coordinates(c.lat, c.lng)]
    if not usable:
        raise NoResult("geocoder returned no usable coordinates")
    confident = [c for c in usable if c.confidence >= min_confidence]
    if not confident:
        if len(usable) > 1:
            raise AmbiguousAddress(
                f"{len(usable)} candidates, none with confidence >= {min_confidence}"
            )
        raise NoResult(f"only candidate has confidence {usable[0].confidence} < {min_confidence}")
    return confident[0]


class GeocodingEnricher:
    """Resolves coordinates for records that lack them.

    Records that already carry valid coordinates are returned unchanged and
    the provider is not called. Retries are left to the caller.
    """

    def __init__(self, geocode: Geocode, *, min_confidence: int = 0) -> None:
        self._geocode = geocode
        self.min_confidence = min_confidence

    def enrich(self, record: PlaceRecord) -> PlaceRecord:
        if record.has_coordinates:
            return record

        address = record.address
        if address.is_empty():
            raise NoResult("record has neither coordinates nor an address")

        query = address.one_line()
        logger.info("Try to resolve lat/lng for '%s' from address (%s)", record.title, query)
        try:
            candidates = self._geocode(query)
        except (OpenCageError, requests.RequestException) as exc:
            raise ProviderError(f"geocoding provider failed: {exc}") from exc

        if not candidates:
            raise NoResult(f"no geo coordinates found for {query!r}")
        if len(candidates) > 1:
            logger.debug("Geocoder returned %d candidates for %r", len(candidates), query)

        best = pick_candidate(candidates, self.min_confidence)
        return record.with_coordinates(best.lat, best.lng)

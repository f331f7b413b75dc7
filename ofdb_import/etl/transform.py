"""Utilities for transforming place records into catalog payloads and back."""

import logging
import math
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from ofdb_import.models import DuplicateCandidate, PlaceRecord

logger = logging.getLogger(__name__)

_EARTH_RADIUS_M = 6_371_000.0


def _place_body(record: PlaceRecord) -> Dict[str, Any]:
    return {
        "title": record.title,
        "description": record.description,
        "lat": record.lat,
        "lng": record.lng,
        "street": record.street,
        "zip": record.zip,
        "city": record.city,
        "country": record.country,
        "state": record.state,
        "contact_name": record.contact_name,
        "email": record.contact_email,
        "telephone": record.contact_phone,
        "homepage": record.homepage,
        "opening_hours": record.opening_hours,
        "founded_on": record.founded_on.isoformat() if record.founded_on else None,
        "categories": [],
        "tags": list(record.tags),
        "image_url": record.image_url,
        "image_link_url": record.image_link_url,
        "links": [],
    }


def to_new_place(record: PlaceRecord) -> Dict[str, Any]:
    """Build the body of ``POST /entries`` and ``POST /search/duplicates``."""
    body = _place_body(record)
    body["license"] = record.license
    return body


def to_update_place(record: PlaceRecord, version: int, base_entry: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build the body of ``PUT /entries/{id}``.

    ``version`` is the version to write, i.e. one above the catalog's current
    one. Categories and custom links are not part of the input schema, so
    they are carried over from ``base_entry`` when given.
    """
    body = _place_body(record)
    body["version"] = version
    if base_entry:
        body["categories"] = list(base_entry.get("categories") or [])
        body["links"] = list(base_entry.get("custom") or base_entry.get("links") or [])
    return body


def _parse_founded_on(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        logger.debug("Ignoring unparsable founded_on from catalog: %s", value)
        return None


def _float_or_none(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def int_or_none(value: Any) -> Optional[int]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def entry_to_record(entry: Dict[str, Any]) -> PlaceRecord:
    """Convert a catalog ``Entry`` into a record, e.g. as the base of a patch."""
    return PlaceRecord(
        id=entry.get("id"),
        version=int_or_none(entry.get("version")),
        title=entry.get("title"),
        description=entry.get("description"),
        lat=_float_or_none(entry.get("lat")),
        lng=_float_or_none(entry.get("lng")),
        street=entry.get("street"),
        zip=entry.get("zip"),
        city=entry.get("city"),
        country=entry.get("country"),
        state=entry.get("state"),
        contact_name=entry.get("contact_name"),
        contact_email=entry.get("email"),
        contact_phone=entry.get("telephone"),
        opening_hours=entry.get("opening_hours"),
        founded_on=_parse_founded_on(entry.get("founded_on")),
        tags=tuple(entry.get("tags") or ()),
        homepage=entry.get("homepage"),
        license=entry.get("license"),
        image_url=entry.get("image_url"),
        image_link_url=entry.get("image_link_url"),
    )


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * _EARTH_RADIUS_M * math.asin(math.sqrt(a))


def to_duplicate_candidates(results: Iterable[Dict[str, Any]], record: PlaceRecord) -> List[DuplicateCandidate]:
    """Map ``PlaceSearchResult`` objects to candidates, keeping every one of them.

    Results without an id are kept with an empty id.
    """
    candidates: List[DuplicateCandidate] = []
    for result in results or []:
        if not isinstance(result, dict):
            logger.warning("Unreadable duplicate result: %r", result)
            candidates.append(DuplicateCandidate(id="", title=str(result)))
            continue
        if not result.get("id"):
            logger.warning("Duplicate result without id: %s", result)
        distance = _float_or_none(result.get("distance"))
        lat, lng = _float_or_none(result.get("lat")), _float_or_none(result.get("lng"))
        if distance is None and None not in (lat, lng) and record.has_coordinates:
            distance = round(haversine_m(record.lat, record.lng, lat, lng), 1)
        candidates.append(
            DuplicateCandidate(id=str(result.get("id") or ""), title=result.get("title") or "", distance=distance)
        )
    return candidates

"""Client utilities for the OpenCage geocoding API."""

import logging
from typing import Any, Dict, List

import requests

from ofdb_import.models import GeocodeCandidate

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.opencagedata.com/geocode/v1"
_RESULT_LIMIT = 5


class OpenCageError(RuntimeError):
    """Raised when OpenCage returns a non-successful response."""


def geocode(address: str, api_key: str, timeout: float = 10) -> List[GeocodeCandidate]:
    """Resolve a one-line address into candidates, in the provider's rank order."""
    if not api_key:
        raise OpenCageError("OPENCAGE_API_KEY is required for geocoding")
    params = {"q": address, "key": api_key, "limit": _RESULT_LIMIT, "no_annotations": 1}
    try:
        response = _SESSION.get(f"{_BASE_URL}/json", params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise OpenCageError(f"request failed: {exc}") from exc

    payload: Dict[str, Any] = {}
    try:
        payload = response.json()
    except ValueError:
        logger.debug("OpenCage returned a non-JSON body (status=%s)", response.status_code)

    status = payload.get("status") or {}
    if response.status_code >= 400 or status.get("code", 200) != 200:
        logger.error(
            "geocode failed: http=%s, code=%s, message=%s",
            response.status_code,
            status.get("code"),
            status.get("message"),
        )
        raise OpenCageError(status.get("message") or f"HTTP {response.status_code}")

    return parse_results(payload)


def parse_results(payload: Dict[str, Any]) -> List[GeocodeCandidate]:
    candidates: List[GeocodeCandidate] = []
    for result in payload.get("results") or []:
        geometry = result.get("geometry") or {}
        try:
            lat = float(geometry["lat"])
            lng = float(geometry["lng"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping result without usable geometry: %s", result)
            continue
        candidates.append(
            GeocodeCandidate(
                lat=lat,
                lng=lng,
                confidence=int(result.get("confidence") or 0),
                formatted=result.get("formatted"),
            )
        )
    return candidates

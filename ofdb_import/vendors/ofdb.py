"""Client for the OpenFairDB JSON API (the place catalog)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ofdb_import.core.errors import FatalError, SubmissionError
from ofdb_import.models import FailureCause

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
USER_AGENT = "ofdb-import/0.1"
_UNAVAILABLE_STATUSES = {502, 503, 504}


class CatalogError(SubmissionError):
    """The catalog refused a single request."""

    cause = FailureCause.REJECTED

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class CatalogRejected(CatalogError):
    cause = FailureCause.REJECTED


class CatalogUnauthorized(CatalogError):
    cause = FailureCause.UNAUTHORIZED


class CatalogNotFound(CatalogError):
    cause = FailureCause.NOT_FOUND


class CatalogConflict(CatalogError):
    cause = FailureCause.VERSION_CONFLICT


class CatalogTransportError(CatalogError):
    cause = FailureCause.TRANSPORT


class CatalogUnavailable(FatalError):
    """The catalog cannot be reached at all; the run must stop."""


class AuthenticationFailed(FatalError):
    """Login was refused, so moderation requests cannot be made."""


def build_session() -> requests.Session:
    """Session retrying connection errors and idempotent requests on 5xx."""
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("GET", "PUT"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return str(payload)[:200]


def raise_for_catalog_status(response: requests.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    message = _error_message(response)
    logger.debug("Catalog answered %s: %s", status, message)
    if status in (401, 403):
        raise CatalogUnauthorized(message, status)
    if status == 404:
        raise CatalogNotFound(message, status)
    if status == 409 or (status == 400 and "version" in message.lower()):
        raise CatalogConflict(message, status)
    if status in _UNAVAILABLE_STATUSES:
        raise CatalogUnavailable(f"catalog unavailable (HTTP {status}): {message}")
    raise CatalogRejected(message, status)


class OfdbClient:
    """Thin wrapper around one ``requests.Session`` bound to a catalog base URL.

    The session keeps the login cookie, so an authenticated client is an
    explicit object: call ``login`` before moderation requests and ``logout``
    (or leave the ``with`` block) to discard it.
    """

    def __init__(
        self,
        api_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        if not api_url:
            raise ValueError("A catalog API URL is required")
        self.api_url = api_url.rstrip("/")
        self.session = session or build_session()
        self.timeout = timeout
        self.logged_in = False

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.api_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.ReadTimeout as exc:
            raise CatalogTransportError(f"timed out waiting for {method} {url}") from exc
        except (requests.ConnectionError, requests.exceptions.RetryError) as exc:
            raise CatalogUnavailable(f"cannot reach catalog at {self.api_url}: {exc}") from exc
        except requests.RequestException as exc:
            raise CatalogTransportError(f"{method} {url} failed: {exc}") from exc

        raise_for_catalog_status(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise CatalogTransportError(f"{method} {url} returned invalid JSON") from exc

    # -- places ------------------------------------------------------------

    def search_duplicates(self, new_place: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Ask the catalog for entries it considers duplicates of ``new_place``."""
        results = self._request("POST", "search/duplicates", json=new_place)
        return list(results or [])

    def create_place(self, new_place: Dict[str, Any]) -> str:
        place_id = self._request("POST", "entries", json=new_place)
        if not place_id:
            raise CatalogRejected("catalog did not return an id for the new place")
        return str(place_id)

    def read_entries(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        joined = ",".join(ids)
        logger.debug("Read entries %s", joined)
        return list(self._request("GET", f"entries/{joined}") or [])

    def fetch_entry(self, place_id: str) -> Dict[str, Any]:
        entries = self.read_entries([place_id])
        if not entries:
            raise CatalogNotFound(f"no entry with id {place_id}", 404)
        return entries[0]

    def update_place(self, place_id: str, update_place: Dict[str, Any]) -> str:
        result = self._request("PUT", f"entries/{place_id}", json=update_place)
        return str(result or place_id)

    # -- moderation ----------------------------------------------------------

    def login(self, email: str, password: str) -> None:
        logger.info("Try to login with '%s'", email)
        try:
            self._request(
                "POST",
                "login",
                json={"email": email, "password": password},
                headers={"Access-Control-Allow-Credentials": "true"},
            )
        except CatalogError as exc:
            raise AuthenticationFailed(f"login as {email} failed: {exc}") from exc
        self.logged_in = True

    def logout(self) -> None:
        if not self.logged_in:
            return
        try:
            self._request("POST", "logout")
        except (CatalogError, CatalogUnavailable) as exc:
            logger.warning("Logout failed, discarding session anyway: %s", exc)
        finally:
            self.session.cookies.clear()
            self.logged_in = False

    def review_places(self, ids: Iterable[str], status: str, comment: Optional[str] = None) -> None:
        joined = ",".join(ids)
        review = {"status": status, "comment": comment}
        logger.debug("Send review %s to places/%s/review", review, joined)
        self._request("POST", f"places/{joined}/review", json=review)

    def close(self) -> None:
        self.logout()
        self.session.close()

    def __enter__(self) -> "OfdbClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

"""Core data models shared by the place import pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

PLACE_FIELDS: Tuple[str, ...] = (
    "title",
    "description",
    "lat",
    "lng",
    "street",
    "zip",
    "city",
    "country",
    "state",
    "contact_name",
    "contact_email",
    "contact_phone",
    "opening_hours",
    "founded_on",
    "tags",
    "homepage",
    "license",
    "image_url",
    "image_link_url",
)


class RunMode(str, Enum):
    IMPORT = "import"
    FORCE_IMPORT = "force_import"
    UPDATE = "update"
    PATCH = "patch"
    REVIEW = "review"


class ReviewDecision(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    ARCHIVE = "archive"

    @property
    def catalog_status(self) -> str:
        return {"confirm": "confirmed", "reject": "rejected", "archive": "archived"}[self.value]


@dataclass(frozen=True, slots=True)
class Address:
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.street, self.zip, self.city, self.country, self.state))

    def one_line(self) -> str:
        locality = " ".join(filter(None, [self.zip, self.city]))
        return ", ".join(filter(None, [self.street, locality, self.state, self.country]))


def valid_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    if lat is None or lng is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


@dataclass(frozen=True, slots=True)
class PlaceRecord:
    """Canonical snapshot of a place decoded from one input row.

    ``id`` and ``version`` are only set for update/patch targets. For patch
    rows ``patch_fields`` names the columns the row actually supplied.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    opening_hours: Optional[str] = None
    founded_on: Optional[date] = None
    tags: Tuple[str, ...] = ()
    homepage: Optional[str] = None
    license: Optional[str] = None
    image_url: Optional[str] = None
    image_link_url: Optional[str] = None
    id: Optional[str] = None
    version: Optional[int] = None
    patch_fields: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def address(self) -> Address:
        return Address(
            street=self.street,
            zip=self.zip,
            city=self.city,
            country=self.country,
            state=self.state,
        )

    @property
    def has_coordinates(self) -> bool:
        return valid_coordinates(self.lat, self.lng)

    @property
    def needs_geocoding(self) -> bool:
        return not self.has_coordinates

    def with_coordinates(self, lat: float, lng: float) -> "PlaceRecord":
        fields = self.patch_fields | {"lat", "lng"} if self.patch_fields else self.patch_fields
        return replace(self, lat=lat, lng=lng, patch_fields=fields)

    def apply_patch(self, patch: "PlaceRecord") -> "PlaceRecord":
        """Return a copy with only the fields named by ``patch.patch_fields`` taken from ``patch``."""
        changes = {name: getattr(patch, name) for name in patch.patch_fields if name in PLACE_FIELDS}
        changes.pop("license", None)
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class ReviewRequest:
    id: str
    decision: ReviewDecision
    comment: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DuplicateCandidate:
    """Existing catalog entry the catalog considers close to a new place."""

    id: str
    title: str
    distance: Optional[float] = None


@dataclass(frozen=True, slots=True)
class GeocodeCandidate:
    lat: float
    lng: float
    confidence: int = 0
    formatted: Optional[str] = None


# ---------------------------------------------------------------------------
# Row outcomes
# ---------------------------------------------------------------------------


class SkipReason(str, Enum):
    DUPLICATE_CANDIDATES = "duplicate_candidates"
    VALIDATION_ERROR = "validation_error"
    GEOCODING_FAILURE = "geocoding_failure"


class FailureCause(str, Enum):
    PARSE_ERROR = "parse_error"
    VERSION_CONFLICT = "version_conflict"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    TRANSPORT = "transport"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True, slots=True)
class Imported:
    id: str


@dataclass(frozen=True, slots=True)
class Updated:
    id: str


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: SkipReason
    message: str = ""
    candidates: Tuple[DuplicateCandidate, ...] = ()


@dataclass(frozen=True, slots=True)
class Failed:
    cause: FailureCause
    message: str = ""


Outcome = Union[Imported, Updated, Skipped, Failed]


@dataclass(frozen=True, slots=True)
class ReportEntry:
    row_number: int
    outcome: Outcome
    place_id: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_done(self) -> bool:
        """Whether a rerun may carry this row over without resubmitting it."""
        return isinstance(self.outcome, (Imported, Updated))

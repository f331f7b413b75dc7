"""Decode CSV and JSON input into place records, one result per input row."""

from __future__ import annotations

import csv
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO, Tuple, Union

from ofdb_import.core.errors import (
    DecodeError,
    InvalidCoordinate,
    InvalidDate,
    InvalidEmail,
    InvalidReviewDecision,
    LicenseNotPatchable,
    MalformedRow,
    MissingField,
    MissingVersion,
    SourceError,
)
from ofdb_import.models import PLACE_FIELDS, PlaceRecord, ReviewDecision, ReviewRequest, RunMode

logger = logging.getLogger(__name__)

IMPORT_COLUMNS: Tuple[str, ...] = PLACE_FIELDS
UPDATE_COLUMNS: Tuple[str, ...] = ("id", "version") + PLACE_FIELDS
REVIEW_COLUMNS: Tuple[str, ...] = ("id", "status", "comment")

REQUIRED_HEADERS = {
    RunMode.IMPORT: {"title", "description", "license"},
    RunMode.FORCE_IMPORT: {"title", "description", "license"},
    RunMode.UPDATE: {"id", "version", "title", "description"},
    RunMode.PATCH: {"id", "version"},
    RunMode.REVIEW: {"id", "status"},
}

TAG_DELIMITER = ","
DATE_FORMAT = "%Y-%m-%d"
UNDECODABLE = re.compile("[\udc80-\udcff]")
EMAIL_REGEX = re.compile(
    r"[A-Z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[A-Z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,}",
    re.IGNORECASE,
)

_REVIEW_ALIASES = {
    "confirm": ReviewDecision.CONFIRM,
    "confirmed": ReviewDecision.CONFIRM,
    "reject": ReviewDecision.REJECT,
    "rejected": ReviewDecision.REJECT,
    "archive": ReviewDecision.ARCHIVE,
    "archived": ReviewDecision.ARCHIVE,
}

Item = Union[PlaceRecord, ReviewRequest]


@dataclass(frozen=True)
class DecodedRow:
    """Either a decoded item or the reason the row could not be decoded."""

    row_number: int
    item: Optional[Item] = None
    error: Optional[DecodeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_coordinate(value: Any, name: str, limit: float) -> Optional[float]:
    text = _text(value)
    if text is None:
        return None
    try:
        number = float(text)
    except ValueError as exc:
        raise InvalidCoordinate(f"{name} is not a number: {text!r}", field=name) from exc
    if not math.isfinite(number) or not -limit <= number <= limit:
        raise InvalidCoordinate(f"{name} must be within [-{limit:g}, {limit:g}], got {text}", field=name)
    return number


def parse_email(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    if not EMAIL_REGEX.fullmatch(text):
        raise InvalidEmail(f"invalid email address: {text!r}", field="contact_email")
    return text


def parse_date(value: Any) -> Optional[date]:
    text = _text(value)
    if text is None:
        return None
    try:
        return datetime.strptime(text, DATE_FORMAT).date()
    except ValueError as exc:
        raise InvalidDate(f"founded_on must use YYYY-MM-DD, got {text!r}", field="founded_on") from exc


def parse_tags(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    segments: Iterable[Any] = value if isinstance(value, (list, tuple)) else str(value).split(TAG_DELIMITER)
    tags: List[str] = []
    for segment in segments:
        tag = _text(segment)
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def parse_version(value: Any) -> int:
    text = _text(value)
    if text is None:
        raise MissingVersion("version is required", field="version")
    try:
        version = int(text)
    except ValueError as exc:
        raise MissingVersion(f"version must be a positive integer, got {text!r}", field="version") from exc
    if version <= 0:
        raise MissingVersion(f"version must be a positive integer, got {version}", field="version")
    return version


def _require(raw: Dict[str, Any], name: str) -> str:
    value = _text(raw.get(name))
    if value is None:
        raise MissingField(f"{name} is required", field=name)
    return value


# ---------------------------------------------------------------------------
# Row parsers
# ---------------------------------------------------------------------------


def _place_values(raw: Dict[str, Any]) -> Dict[str, Any]:
    lat = parse_coordinate(raw.get("lat"), "lat", 90.0)
    lng = parse_coordinate(raw.get("lng"), "lng", 180.0)
    if (lat is None) != (lng is None):
        raise InvalidCoordinate("lat and lng must be given together", field="lat" if lat is None else "lng")

    return {
        "title": _text(raw.get("title")),
        "description": _text(raw.get("description")),
        "lat": lat,
        "lng": lng,
        "street": _text(raw.get("street")),
        "zip": _text(raw.get("zip")),
        "city": _text(raw.get("city")),
        "country": _text(raw.get("country")),
        "state": _text(raw.get("state")),
        "contact_name": _text(raw.get("contact_name")),
        "contact_email": parse_email(raw.get("contact_email")),
        "contact_phone": _text(raw.get("contact_phone")),
        "opening_hours": _text(raw.get("opening_hours")),
        "founded_on": parse_date(raw.get("founded_on")),
        "tags": parse_tags(raw.get("tags")),
        "homepage": _text(raw.get("homepage")),
        "license": _text(raw.get("license")),
        "image_url": _text(raw.get("image_url")),
        "image_link_url": _text(raw.get("image_link_url")),
    }


def parse_new_place(raw: Dict[str, Any]) -> PlaceRecord:
    for name in ("title", "description", "license"):
        _require(raw, name)
    record = PlaceRecord(**_place_values(raw))
    if not any((record.street, record.zip, record.city, record.country)):
        raise MissingField("an address (street, zip, city or country) is required", field="address")
    return record


def parse_full_update(raw: Dict[str, Any]) -> PlaceRecord:
    place_id = _require(raw, "id")
    version = parse_version(raw.get("version"))
    for name in ("title", "description"):
        _require(raw, name)
    values = _place_values(raw)
    present = frozenset(name for name in PLACE_FIELDS if name != "license" and name in raw)
    return PlaceRecord(id=place_id, version=version, patch_fields=present, **values)


def parse_patch(raw: Dict[str, Any]) -> PlaceRecord:
    if _text(raw.get("license")) is not None:
        raise LicenseNotPatchable("license cannot be changed with a patch", field="license")
    place_id = _require(raw, "id")
    version = parse_version(raw.get("version"))
    values = _place_values(raw)
    present = frozenset(name for name in PLACE_FIELDS if name != "license" and _text(raw.get(name)) is not None)
    return PlaceRecord(id=place_id, version=version, patch_fields=present, **values)


def parse_review(raw: Dict[str, Any]) -> ReviewRequest:
    place_id = _require(raw, "id")
    status = _require(raw, "status").lower()
    decision = _REVIEW_ALIASES.get(status)
    if decision is None:
        raise InvalidReviewDecision(f"unknown review status {status!r}", field="status")
    return ReviewRequest(id=place_id, decision=decision, comment=_text(raw.get("comment")))


_PARSERS = {
    RunMode.IMPORT: parse_new_place,
    RunMode.FORCE_IMPORT: parse_new_place,
    RunMode.UPDATE: parse_full_update,
    RunMode.PATCH: parse_patch,
    RunMode.REVIEW: parse_review,
}


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def _check_headers(fieldnames: Optional[Iterable[str]], mode: RunMode) -> None:
    if not fieldnames:
        raise SourceError("input has no header row")
    if any(UNDECODABLE.search(name) for name in fieldnames if name):
        raise SourceError("header row is not valid UTF-8")
    headers = {name.strip() for name in fieldnames if name}
    missing = sorted(REQUIRED_HEADERS[mode] - headers)
    if missing:
        raise SourceError(f"input is missing required columns: {', '.join(missing)}")
    known = set(UPDATE_COLUMNS) | set(REVIEW_COLUMNS)
    unknown = sorted(headers - known)
    if unknown:
        logger.warning("Ignoring unknown columns: %s", ", ".join(unknown))


def iter_csv_rows(stream: TextIO, mode: RunMode) -> Iterator[Tuple[int, Union[Dict[str, Any], DecodeError]]]:
    reader = csv.DictReader(stream)
    _check_headers(reader.fieldnames, mode)
    row_number = 0
    while True:
        try:
            raw = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            row_number += 1
            yield row_number, MalformedRow(f"unreadable CSV record: {exc}")
            continue
        row_number += 1
        if None in raw:
            yield row_number, MalformedRow(f"row has {len(raw[None])} more field(s) than the header")
            continue
        if any(value and UNDECODABLE.search(value) for value in raw.values()):
            yield row_number, MalformedRow("row is not valid UTF-8")
            continue
        yield row_number, {key.strip(): value for key, value in raw.items() if key}


def iter_json_rows(stream: TextIO) -> Iterator[Tuple[int, Union[Dict[str, Any], DecodeError]]]:
    text = stream.read()
    if UNDECODABLE.search(text):
        raise SourceError("input is not valid UTF-8")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SourceError(f"input is not valid JSON: {exc}") from exc
    if not isinstance(document, list):
        raise SourceError("JSON input must be an array of objects")
    for index, raw in enumerate(document, start=1):
        if not isinstance(raw, dict):
            yield index, MalformedRow(f"expected an object, got {type(raw).__name__}")
            continue
        yield index, raw


def decode(stream: TextIO, mode: RunMode, fmt: str = "csv") -> Iterator[DecodedRow]:
    """Yield one ``DecodedRow`` per input row, in input order.

    Source level problems (missing header columns, a JSON document that is not
    an array) raise ``SourceError`` when iteration starts.
    """
    if fmt == "csv":
        rows = iter_csv_rows(stream, mode)
    elif fmt == "json":
        rows = iter_json_rows(stream)
    else:
        raise SourceError(f"unsupported input format: {fmt}")

    parse = _PARSERS[mode]
    for row_number, raw in rows:
        if isinstance(raw, DecodeError):
            yield DecodedRow(row_number, error=raw)
            continue
        try:
            yield DecodedRow(row_number, item=parse(raw))
        except DecodeError as exc:
            logger.debug("Row %d rejected: %s", row_number, exc)
            yield DecodedRow(row_number, error=exc)


def source_format(path: Path) -> str:
    return "json" if path.suffix.lower() == ".json" else "csv"


def open_source(path: Path, mode: RunMode) -> Iterator[DecodedRow]:
    """Decode a file; each call reopens it, so the sequence can be restarted."""
    try:
        stream = path.open("r", newline="", encoding="utf-8-sig", errors="surrogateescape")
    except OSError as exc:
        raise SourceError(f"cannot read {path}: {exc}") from exc
    with stream:
        yield from decode(stream, mode, source_format(path))


def record_to_row(record: PlaceRecord, columns: Iterable[str] = IMPORT_COLUMNS) -> Dict[str, str]:
    """Serialize a record back to the CSV schema, empty strings for absent values."""
    row: Dict[str, str] = {}
    for name in columns:
        value = getattr(record, name, None)
        if value is None:
            row[name] = ""
        elif name == "tags":
            row[name] = TAG_DELIMITER.join(value)
        elif isinstance(value, date):
            row[name] = value.strftime(DATE_FORMAT)
        else:
            row[name] = str(value)
    return row

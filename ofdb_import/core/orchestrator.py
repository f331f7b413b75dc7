"""Submit decoded rows to the catalog and classify what happened to each."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Protocol, Union

from ofdb_import.etl.transform import (
    entry_to_record,
    int_or_none,
    to_duplicate_candidates,
    to_new_place,
    to_update_place,
)
from ofdb_import.models import (
    Failed,
    FailureCause,
    Imported,
    Outcome,
    PlaceRecord,
    ReviewRequest,
    RunMode,
    Skipped,
    SkipReason,
    Updated,
)
from ofdb_import.vendors.ofdb import CatalogError

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    """The catalog operations the pipeline relies on (see ``OfdbClient``)."""

    def search_duplicates(self, new_place: Dict[str, Any]) -> List[Dict[str, Any]]: ...

    def create_place(self, new_place: Dict[str, Any]) -> str: ...

    def fetch_entry(self, place_id: str) -> Dict[str, Any]: ...

    def update_place(self, place_id: str, update_place: Dict[str, Any]) -> str: ...

    def review_places(self, ids: Iterable[str], status: str, comment: Any = None) -> None: ...


def _failed(exc: CatalogError) -> Failed:
    return Failed(cause=exc.cause, message=str(exc))


class SubmissionOrchestrator:
    """One operation per run mode; catalog errors become ``Failed`` outcomes.

    ``FatalError`` subclasses raised by the catalog (unreachable, login
    refused) are not caught here and stop the run.
    """

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    def submit(self, item: Union[PlaceRecord, ReviewRequest], mode: RunMode) -> Outcome:
        if mode is RunMode.REVIEW:
            if not isinstance(item, ReviewRequest):
                raise TypeError(f"review mode expects ReviewRequest, got {type(item).__name__}")
            return self.review(item)
        if not isinstance(item, PlaceRecord):
            raise TypeError(f"{mode.value} mode expects PlaceRecord, got {type(item).__name__}")
        if mode is RunMode.IMPORT:
            return self.create_with_duplicate_check(item)
        if mode is RunMode.FORCE_IMPORT:
            return self.force_create(item)
        if mode is RunMode.UPDATE:
            return self.update(item)
        if mode is RunMode.PATCH:
            return self.patch(item, item.patch_fields)
        raise ValueError(f"unsupported run mode: {mode}")

    def create_with_duplicate_check(self, record: PlaceRecord) -> Outcome:
        new_place = to_new_place(record)
        try:
            results = self.catalog.search_duplicates(new_place)
        except CatalogError as exc:
            logger.warning("Duplicate check for '%s' failed: %s", record.title, exc)
            return _failed(exc)

        candidates = to_duplicate_candidates(results, record)
        if candidates:
            logger.warning("Found %d possible duplicates for '%s':", len(candidates), record.title)
            for candidate in candidates:
                logger.warning(" - %s (id: %s)", candidate.title, candidate.id)
            return Skipped(
                reason=SkipReason.DUPLICATE_CANDIDATES,
                message=f"{len(candidates)} possible duplicate(s)",
                candidates=tuple(candidates),
            )
        return self._create(record, new_place)

    def force_create(self, record: PlaceRecord) -> Outcome:
        return self._create(record, to_new_place(record))

    def _create(self, record: PlaceRecord, new_place: Dict[str, Any]) -> Outcome:
        try:
            place_id = self.catalog.create_place(new_place)
        except CatalogError as exc:
            logger.warning("Could not import '%s': %s", record.title, exc)
            return _failed(exc)
        logger.debug("Successfully imported '%s' with ID=%s", record.title, place_id)
        return Imported(id=place_id)

    def _current_entry(self, record: PlaceRecord) -> Union[Dict[str, Any], Failed]:
        try:
            entry = self.catalog.fetch_entry(record.id)
        except CatalogError as exc:
            return _failed(exc)
        current = int_or_none(entry.get("version"))
        if current is None:
            return Failed(
                cause=FailureCause.REJECTED,
                message=f"catalog returned an unreadable version {entry.get('version')!r} for {record.id}",
            )
        if current != record.version:
            return Failed(
                cause=FailureCause.VERSION_CONFLICT,
                message=f"row is based on version {record.version}, catalog holds version {current}",
            )
        return entry

    def _put(self, record: PlaceRecord, body: Dict[str, Any]) -> Outcome:
        try:
            place_id = self.catalog.update_place(record.id, body)
        except CatalogError as exc:
            logger.warning("Could not update '%s' (%s): %s", record.title, record.id, exc)
            return _failed(exc)
        logger.debug("Successfully updated '%s' with ID=%s", record.title, place_id)
        return Updated(id=place_id)

    def update(self, record: PlaceRecord) -> Outcome:
        """Replace the entry ``record.id``, if ``record.version`` is current.

        When ``record.patch_fields`` is set (the columns or keys the row
        carried), fields the row did not mention keep their catalog value.
        """
        entry = self._current_entry(record)
        if isinstance(entry, Failed):
            return entry
        merged = entry_to_record(entry).apply_patch(record) if record.patch_fields else record
        if not merged.has_coordinates:
            return Skipped(reason=SkipReason.VALIDATION_ERROR, message="updated entry has no valid coordinates")
        body = to_update_place(merged, record.version + 1, base_entry=entry)
        return self._put(record, body)

    def patch(self, record: PlaceRecord, fields: Iterable[str]) -> Outcome:
        """Change only ``fields`` of the entry ``record.id``; everything else is kept."""
        fields = frozenset(fields) - {"license"}
        if not fields:
            return Skipped(reason=SkipReason.VALIDATION_ERROR, message="patch row has no fields to change")
        entry = self._current_entry(record)
        if isinstance(entry, Failed):
            return entry
        base = entry_to_record(entry)
        merged = base.apply_patch(replace(record, patch_fields=fields))
        if not merged.has_coordinates:
            return Skipped(reason=SkipReason.VALIDATION_ERROR, message="patched entry has no valid coordinates")
        body = to_update_place(merged, record.version + 1, base_entry=entry)
        return self._put(record, body)

    def review(self, request: ReviewRequest) -> Outcome:
        try:
            self.catalog.review_places([request.id], request.decision.catalog_status, request.comment)
        except CatalogError as exc:
            logger.warning("Could not %s entry %s: %s", request.decision.value, request.id, exc)
            return _failed(exc)
        logger.debug("Entry %s is now %s", request.id, request.decision.catalog_status)
        return Updated(id=request.id)

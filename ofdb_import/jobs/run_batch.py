"""Batch job: decode, enrich, submit and report every input row."""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional

from ofdb_import.core.errors import EnrichError, FatalError, ProviderError
from ofdb_import.core.geocoding import GeocodingEnricher
from ofdb_import.core.orchestrator import SubmissionOrchestrator
from ofdb_import.core.report import ReportAccumulator
from ofdb_import.etl.decode import DecodedRow
from ofdb_import.models import (
    Failed,
    FailureCause,
    PlaceRecord,
    ReportEntry,
    RunMode,
    Skipped,
    SkipReason,
)

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 1.2
MAX_WORKERS_LIMIT = 16
_GEOCODED_MODES = {RunMode.IMPORT, RunMode.FORCE_IMPORT, RunMode.UPDATE}


class RunState(str, Enum):
    DECODING = "decoding"
    ENRICHING = "enriching"
    SUBMITTING = "submitting"
    REPORTING = "reporting"
    DONE = "done"
    ABORTED = "aborted"


class BatchRun:
    """Drives one batch through the pipeline.

    Rows are processed one after another unless ``max_workers`` is above one,
    in which case at most ``max_workers`` rows are in flight and finished rows
    are appended to the report in row order. ``abort()`` stops new rows from
    starting; rows already in flight finish, and the report collected so far
    is written when the report has a path.
    """

    def __init__(
        self,
        rows: Iterable[DecodedRow],
        mode: RunMode,
        orchestrator: SubmissionOrchestrator,
        report: ReportAccumulator,
        *,
        enricher: Optional[GeocodingEnricher] = None,
        max_workers: int = 1,
        geocode_retries: int = 2,
        resume: Optional[Mapping[int, ReportEntry]] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if max_workers > MAX_WORKERS_LIMIT:
            logger.warning("Limiting workers to %d (requested %d)", MAX_WORKERS_LIMIT, max_workers)
            max_workers = MAX_WORKERS_LIMIT
        self.rows = rows
        self.mode = mode
        self.orchestrator = orchestrator
        self.report = report
        self.enricher = enricher
        self.max_workers = max_workers
        self.geocode_retries = geocode_retries
        self.resume = resume or {}
        self.state = RunState.DECODING
        self.abort_reason: Optional[str] = None
        self._abort = threading.Event()
        self._started = False

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self, reason: str = "abort requested") -> None:
        if not self._abort.is_set():
            logger.warning("Aborting run: %s", reason)
            self.abort_reason = reason
            self._abort.set()

    def _set_state(self, state: RunState) -> None:
        if self.max_workers == 1:
            self.state = state

    # -- per row -------------------------------------------------------------

    def _enrich(self, record: PlaceRecord) -> PlaceRecord:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.enricher.enrich(record)
            except ProviderError as exc:
                if attempt > self.geocode_retries or self.aborted:
                    raise
                logger.warning(
                    "Geocoding '%s' failed (attempt %s/%s): %s",
                    record.title,
                    attempt,
                    self.geocode_retries + 1,
                    exc,
                )
                time.sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))

    def _needs_lookup(self, record: PlaceRecord) -> bool:
        if self.mode not in _GEOCODED_MODES or not record.needs_geocoding:
            return False
        # an update without address fields keeps the catalog coordinates
        return self.mode is not RunMode.UPDATE or not record.address.is_empty()

    def process_row(self, decoded: DecodedRow) -> ReportEntry:
        row_number = decoded.row_number
        if not decoded.ok:
            logger.warning("Could not read record %d: %s", row_number, decoded.error)
            return ReportEntry(row_number, Failed(FailureCause.PARSE_ERROR, str(decoded.error)))

        item = decoded.item
        title = getattr(item, "title", None)
        place_id = item.id

        if isinstance(item, PlaceRecord) and self._needs_lookup(item):
            self._set_state(RunState.ENRICHING)
            if self.enricher is None:
                outcome = Skipped(SkipReason.GEOCODING_FAILURE, "no geocoder configured")
                return ReportEntry(row_number, outcome, place_id, title)
            try:
                item = self._enrich(item)
            except EnrichError as exc:
                logger.warning("Could not find geo location for '%s': %s", title, exc)
                return ReportEntry(row_number, Skipped(SkipReason.GEOCODING_FAILURE, str(exc)), place_id, title)

        self._set_state(RunState.SUBMITTING)
        try:
            outcome = self.orchestrator.submit(item, self.mode)
        except FatalError as exc:
            self.abort(str(exc))
            outcome = Failed(FailureCause.UNREACHABLE, str(exc))
        return ReportEntry(row_number, outcome, place_id, title)

    def _carried(self, row_number: int) -> Optional[ReportEntry]:
        previous = self.resume.get(row_number)
        if previous is not None and previous.is_done:
            logger.debug("Row %d already done in a previous run (%s)", row_number, previous.place_id)
            return previous
        return None

    # -- scheduling ------------------------------------------------------------

    def _run_sequential(self) -> None:
        for decoded in self.rows:
            self._started = True
            if self.aborted:
                break
            self._set_state(RunState.DECODING)
            entry = self._carried(decoded.row_number) or self.process_row(decoded)
            self._set_state(RunState.REPORTING)
            self.report.append(entry.row_number, entry)

    def _run_pool(self) -> None:
        pending: Dict[Future, int] = {}
        finished: Dict[int, ReportEntry] = {}
        next_row = 1

        def collect(done: Iterable[Future]) -> None:
            nonlocal next_row
            for future in done:
                pending.pop(future)
                entry = future.result()
                finished[entry.row_number] = entry
            while next_row in finished:
                self.report.append(next_row, finished.pop(next_row))
                next_row += 1

        self.state = RunState.SUBMITTING
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for decoded in self.rows:
                self._started = True
                if self.aborted:
                    break
                carried = self._carried(decoded.row_number)
                if carried is not None:
                    finished[carried.row_number] = carried
                    collect([])
                    continue
                while len(pending) >= self.max_workers:
                    done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                    collect(done)
                if self.aborted:
                    break
                pending[executor.submit(self.process_row, decoded)] = decoded.row_number
            done, _ = wait(list(pending))
            collect(done)

        self.state = RunState.REPORTING
        for row_number in sorted(finished):
            self.report.append(row_number, finished.pop(row_number))

    def run(self) -> RunState:
        logger.info("Starting %s run", self.mode.value)
        try:
            if self.max_workers == 1:
                self._run_sequential()
            else:
                self._run_pool()
        finally:
            if self.report.path is not None and self._started:
                self.report.write()
                logger.info("Report written to %s", self.report.path)

        self.state = RunState.ABORTED if self.aborted else RunState.DONE
        summary = self.report.summary()
        if summary["imported"]:
            logger.info("Successfully imported %d places", summary["imported"])
        if summary["updated"]:
            logger.info("Successfully updated %d places", summary["updated"])
        if summary["duplicates"]:
            logger.warning("Found %d places with possible duplicates", summary["duplicates"])
        if summary["skipped"] + summary["errors"]:
            logger.warning("%d places contain errors", summary["skipped"] + summary["errors"])
        logger.info("Run finished: state=%s rows=%d", self.state.value, summary["rows"])
        return self.state

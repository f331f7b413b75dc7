"""Append-only accumulation of per-row outcomes and the report file format."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from ofdb_import.core.errors import ReportDestinationError
from ofdb_import.models import (
    DuplicateCandidate,
    Failed,
    FailureCause,
    Imported,
    ReportEntry,
    Skipped,
    SkipReason,
    Updated,
)

logger = logging.getLogger(__name__)


def entry_to_dict(entry: ReportEntry) -> Dict[str, Any]:
    data: Dict[str, Any] = {"row": entry.row_number, "id": entry.place_id, "title": entry.title}
    outcome = entry.outcome
    if isinstance(outcome, Imported):
        data.update(id=outcome.id, status="imported")
    elif isinstance(outcome, Updated):
        data.update(id=outcome.id, status="updated")
    elif isinstance(outcome, Skipped) and outcome.reason is SkipReason.DUPLICATE_CANDIDATES:
        data.update(
            status="duplicate",
            message=outcome.message,
            duplicates=[
                {"id": c.id, "title": c.title, "distance": c.distance} for c in outcome.candidates
            ],
        )
    elif isinstance(outcome, Skipped):
        data.update(status="skipped", reason=outcome.reason.value, message=outcome.message)
    elif isinstance(outcome, Failed):
        data.update(status="error", cause=outcome.cause.value, message=outcome.message)
    else:
        raise TypeError(f"unhandled outcome: {outcome!r}")
    return data


def entry_from_dict(data: Dict[str, Any]) -> ReportEntry:
    status = data.get("status")
    if status == "imported":
        outcome = Imported(id=data["id"])
    elif status == "updated":
        outcome = Updated(id=data["id"])
    elif status == "duplicate":
        outcome = Skipped(
            reason=SkipReason.DUPLICATE_CANDIDATES,
            message=data.get("message") or "",
            candidates=tuple(
                DuplicateCandidate(id=c["id"], title=c.get("title") or "", distance=c.get("distance"))
                for c in data.get("duplicates") or []
            ),
        )
    elif status == "skipped":
        outcome = Skipped(reason=SkipReason(data["reason"]), message=data.get("message") or "")
    elif status == "error":
        outcome = Failed(cause=FailureCause(data["cause"]), message=data.get("message") or "")
    else:
        raise ValueError(f"unknown report status: {status!r}")
    return ReportEntry(
        row_number=int(data["row"]),
        outcome=outcome,
        place_id=data.get("id"),
        title=data.get("title"),
    )


def check_destination(path: Path) -> Path:
    """Fail early when a report could never be written to ``path``."""
    if path.exists() and path.is_dir():
        raise ReportDestinationError(f"report destination {path} is a directory")
    parent = path.parent
    if not parent.is_dir():
        raise ReportDestinationError(f"report directory {parent} does not exist")
    if not os.access(parent, os.W_OK):
        raise ReportDestinationError(f"report directory {parent} is not writable")
    return path


def load_report(path: Path) -> Dict[int, ReportEntry]:
    """Read a report written by a previous run, keyed by row number."""
    with path.open("r", encoding="utf-8") as fh:
        document = json.load(fh)
    if not isinstance(document, list):
        raise ValueError(f"{path} is not a report: expected a JSON array")
    entries = (entry_from_dict(item) for item in document)
    return {entry.row_number: entry for entry in entries}


class ReportAccumulator:
    """Thread-safe, append-only sink for report entries.

    Entries are kept by row number and always serialized in row order. With
    ``checkpoint_every`` set, the report is rewritten to ``path`` every that
    many appends so an interrupted process leaves a usable file behind.
    """

    def __init__(self, path: Optional[Path] = None, *, checkpoint_every: int = 0) -> None:
        self.path = path
        self.checkpoint_every = checkpoint_every
        self._entries: Dict[int, ReportEntry] = {}
        self._lock = threading.Lock()

    def append(self, row_number: int, entry: ReportEntry) -> None:
        if entry.row_number != row_number:
            raise ValueError(f"entry for row {entry.row_number} appended as row {row_number}")
        with self._lock:
            if row_number in self._entries:
                raise ValueError(f"row {row_number} already has an outcome")
            self._entries[row_number] = entry
            count = len(self._entries)
        if self.path and self.checkpoint_every and count % self.checkpoint_every == 0:
            self.write()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, row_number: int) -> bool:
        with self._lock:
            return row_number in self._entries

    def entries(self) -> List[ReportEntry]:
        with self._lock:
            return [self._entries[n] for n in sorted(self._entries)]

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry_to_dict(entry) for entry in self.entries()]

    def summary(self) -> Dict[str, int]:
        counts = Counter(item["status"] for item in self.to_list())
        return {
            "rows": sum(counts.values()),
            "imported": counts["imported"],
            "updated": counts["updated"],
            "duplicates": counts["duplicate"],
            "skipped": counts["skipped"],
            "errors": counts["error"],
        }

    def write(self, path: Optional[Path] = None) -> Path:
        """Atomically replace the report file with the entries collected so far."""
        target = path or self.path
        if target is None:
            raise ReportDestinationError("no report destination configured")
        payload = self.to_list()
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        except OSError as exc:
            raise ReportDestinationError(f"cannot write report to {target}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, target)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise ReportDestinationError(f"cannot write report to {target}: {exc}") from exc
        logger.debug("Wrote %d report entries to %s", len(payload), target)
        return target

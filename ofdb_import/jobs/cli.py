"""Command line entrypoint for bulk place imports, updates and reviews."""

import argparse
import contextlib
import functools
import json
import logging
import signal
from pathlib import Path
from typing import Iterator, List, Optional

from ofdb_import.core.config import ConfigError, Settings, get_settings
from ofdb_import.core.errors import FatalError, ReportDestinationError, SourceError
from ofdb_import.core.geocoding import GeocodingEnricher
from ofdb_import.core.orchestrator import SubmissionOrchestrator
from ofdb_import.core.report import ReportAccumulator, check_destination, load_report
from ofdb_import.etl.decode import open_source
from ofdb_import.jobs.run_batch import BatchRun, RunState
from ofdb_import.models import RunMode
from ofdb_import.vendors import opencage
from ofdb_import.vendors.ofdb import OfdbClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_NOT_STARTED = 2
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def default_report_path(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}_report.json")


def run_mode(args: argparse.Namespace) -> RunMode:
    if args.command == "import":
        return RunMode.FORCE_IMPORT if args.ignore_duplicates else RunMode.IMPORT
    if args.command == "update":
        return RunMode.PATCH if args.patch else RunMode.UPDATE
    if args.command == "review":
        return RunMode.REVIEW
    raise ValueError(f"{args.command} is not a batch command")


@contextlib.contextmanager
def abort_on_signals(run: BatchRun) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative abort of ``run``."""

    def _handler(signum, frame) -> None:
        run.abort(f"received {signal.Signals(signum).name}")

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def build_enricher(settings: Settings) -> GeocodingEnricher:
    geocode = functools.partial(
        opencage.geocode,
        api_key=settings.opencage_api_key,
        timeout=settings.request_timeout,
    )
    return GeocodingEnricher(geocode, min_confidence=settings.geocode_min_confidence)


def run_batch_command(args: argparse.Namespace, settings: Settings) -> int:
    mode = run_mode(args)
    if not args.input.is_file():
        raise SourceError(f"input file {args.input} does not exist")
    try:
        report_path = check_destination(args.report_file or default_report_path(args.input))
    except ReportDestinationError as exc:
        logger.error("Could not start: %s", exc)
        return EXIT_NOT_STARTED

    resume = None
    if getattr(args, "resume_from", None):
        try:
            resume = load_report(args.resume_from)
        except (OSError, ValueError, KeyError) as exc:
            raise SourceError(f"cannot read previous report {args.resume_from}: {exc}") from exc
    report = ReportAccumulator(report_path, checkpoint_every=settings.report_checkpoint_every)

    with OfdbClient(args.api_url, timeout=settings.request_timeout) as client:
        if mode is RunMode.REVIEW:
            try:
                client.login(args.email, args.password)
            except FatalError as exc:
                logger.error("Login failed: %s", exc)
                report.write()
                return EXIT_ABORTED

        run = BatchRun(
            open_source(args.input, mode),
            mode,
            SubmissionOrchestrator(client),
            report,
            enricher=build_enricher(settings),
            max_workers=args.workers,
            geocode_retries=settings.geocode_retries,
            resume=resume,
        )
        with abort_on_signals(run):
            state = run.run()

    return EXIT_ABORTED if state is RunState.ABORTED else EXIT_OK


def read_command(args: argparse.Namespace, settings: Settings) -> int:
    with OfdbClient(args.api_url, timeout=settings.request_timeout) as client:
        entries = client.read_entries(args.ids)
    print(json.dumps(entries, ensure_ascii=False))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="ofdb-import", description="Bulk import and maintain places in OpenFairDB")
    parser.add_argument("--api-url", dest="api_url", default=settings.api_url, help="Base URL of the JSON API")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_batch_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("input", type=Path, help="CSV or JSON input file")
        sub.add_argument("--report-file", type=Path, help="Where to write the JSON report")
        sub.add_argument(
            "--workers",
            type=int,
            default=settings.max_workers,
            help="Number of rows processed concurrently",
        )

    import_parser = subparsers.add_parser("import", help="Import new places")
    add_batch_options(import_parser)
    import_parser.add_argument(
        "--ignore-duplicates",
        action="store_true",
        help="Create every row without asking the catalog for duplicates",
    )
    import_parser.add_argument(
        "--resume-from",
        type=Path,
        help="Report of a previous run; rows it marks imported are not submitted again",
    )

    update_parser = subparsers.add_parser("update", help="Update existing places")
    add_batch_options(update_parser)
    update_parser.add_argument("--patch", action="store_true", help="Only change the fields present in each row")

    review_parser = subparsers.add_parser("review", help="Confirm, reject or archive places")
    add_batch_options(review_parser)
    review_parser.add_argument("--email", required=True, help="Login of a moderator account")
    review_parser.add_argument("--password", required=True, help="Password of the moderator account")

    read_parser = subparsers.add_parser("read", help="Print entries as JSON")
    read_parser.add_argument("ids", nargs="+", help="Entry IDs")
    return parser


def run_command(args: argparse.Namespace) -> int:
    settings = get_settings()
    if not args.api_url:
        raise ConfigError("OFDB_API_URL must be set (or passed with --api-url) to reach the catalog.")
    if args.command == "read":
        return read_command(args, settings)
    return run_batch_command(args, settings)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        parser = build_parser()
    except ConfigError as exc:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error("Could not start: %s", exc)
        return EXIT_NOT_STARTED
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        return run_command(args)
    except (ConfigError, SourceError) as exc:
        logger.error("Could not start: %s", exc)
        return EXIT_NOT_STARTED
    except FatalError as exc:
        logger.error("Run aborted: %s", exc)
        return EXIT_ABORTED


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import AppConfig, config_path, load_config
from .engine import Engine, build_engine
from .errors import DealflowMatchError
from .feeds import load_batch
from .models import MatchFilters
from .records import filters_from_payload, result_to_payload

console = Console(stderr=True)
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestSummary:
    files: int
    accepted: int
    rejected: int
    removed: int
    total_signals: int


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(config_path(args.config))
    except ValueError as exc:
        parser.error(f"invalid configuration: {exc}")
    if args.data_dir:
        config.store.data_dir = args.data_dir
    setup_logging(config.log_level if not args.verbose else "DEBUG")

    try:
        engine = build_engine(config)
        exit_code = args.handler(engine, config, args)
    except (DealflowMatchError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)
    sys.exit(exit_code or 0)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealflow-match", description="Match startups to government signals"
    )
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument("--data-dir", help="Directory holding the signal store and index")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP match service")
    serve.add_argument("--host", help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")
    serve.set_defaults(handler=_serve)

    ingest = commands.add_parser("ingest", help="Ingest signal batches (JSON, JSONL or RSS)")
    ingest.add_argument("files", nargs="*", help="Batch files to ingest")
    ingest.add_argument("--remove", nargs="*", default=[], help="Signal ids to remove")
    ingest.add_argument(
        "--source-type", default="grant", help="source_type assigned to RSS/Atom feed entries"
    )
    ingest.set_defaults(handler=_ingest)

    match = commands.add_parser("match", help="Match a startup description")
    match.add_argument("description", help="Free-text startup description")
    match.add_argument("--top-n", type=int, default=10)
    match.add_argument("--agency", action="append", default=[], help="Restrict to an agency")
    match.add_argument("--category", action="append", default=[], help="Restrict to a category")
    match.add_argument("--include-expired", action="store_true", help="Include past-due signals")
    match.add_argument("--json", action="store_true", help="Print the wire response as JSON")
    match.set_defaults(handler=_match)

    rebuild = commands.add_parser("rebuild", help="Re-extract all signals and rebuild the index")
    rebuild.set_defaults(handler=_rebuild)

    stats = commands.add_parser("stats", help="Show store and index statistics")
    stats.set_defaults(handler=_stats)
    return parser


def _serve(engine: Engine, config: AppConfig, args: argparse.Namespace) -> int:
    from .server import create_app

    app = create_app(engine, autosave=True)
    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("Serving %d signals on http://%s:%d", len(engine.store), host, port)
    app.run(host=host, port=port, debug=False, threaded=True)
    return 0


def _ingest(engine: Engine, config: AppConfig, args: argparse.Namespace) -> int:
    summary = run_ingest(engine, [Path(name) for name in args.files], args.remove, args.source_type)
    print(
        "Ingest complete: "
        f"files={summary.files} "
        f"accepted={summary.accepted} "
        f"rejected={summary.rejected} "
        f"removed={summary.removed} "
        f"signals={summary.total_signals}"
    )
    return 0 if summary.accepted or not args.files else 1


def run_ingest(
    engine: Engine,
    paths: list[Path],
    remove: list[str],
    source_type: str = "grant",
) -> IngestSummary:
    accepted = rejected = removed = 0
    for path in paths:
        records = load_batch(path, source_type=source_type)
        report = engine.ingest(records)
        accepted += len(report.accepted)
        rejected += len(report.rejected)
        for rejection in report.rejected:
            logger.warning(
                "%s: record %s rejected: %s", path, rejection["index"], rejection["reason"]
            )
    if remove:
        report = engine.ingest([], remove=remove)
        removed = len(report.removed)
    engine.save()
    return IngestSummary(
        files=len(paths),
        accepted=accepted,
        rejected=rejected,
        removed=removed,
        total_signals=len(engine.store),
    )


def _match(engine: Engine, config: AppConfig, args: argparse.Namespace) -> int:
    filters: MatchFilters = filters_from_payload(
        {
            "agency": args.agency,
            "category": args.category,
            "include_expired": args.include_expired,
        }
    )
    results = engine.service.match(args.description, top_n=args.top_n, filters=filters)
    if args.json:
        print(json.dumps({"matches": [result_to_payload(result) for result in results]}, indent=2))
        return 0

    if not results:
        print("No matching signals.")
        return 0
    for rank, result in enumerate(results, start=1):
        signal = result.signal
        print(
            f"{rank}. [{signal.source_type}] {signal.title} ({signal.agency or '-'}) "
            f"score {result.score:.3f}"
        )
        print(f"   {result.reasoning}")
    return 0


def _rebuild(engine: Engine, config: AppConfig, args: argparse.Namespace) -> int:
    count = engine.rebuild()
    engine.save()
    print(f"Rebuilt index: signals={count} embedder={engine.manifest.embedder}")
    return 0


def _stats(engine: Engine, config: AppConfig, args: argparse.Namespace) -> int:
    print(json.dumps(engine.stats(), indent=2))
    return 0


if __name__ == "__main__":
    main()

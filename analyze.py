"""Command line entry points for batch work against the monitoring database.

``run`` analyses stored messages, ``embed`` embeds knowledge entries and
``sweep`` times out issues whose deadline has passed. All commands read
``DATABASE_URL`` and the same environment settings as the API.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime

from dotenv import load_dotenv

from issuewatch.knowledge.embeddings import (
    build_embedding_service,
    embed_all_entries,
    embedding_coverage,
)
from issuewatch.models import as_utc
from issuewatch.postgres import PostgresMonitorRepository
from issuewatch.services import build_analysis_service, build_lifecycle
from issuewatch.settings import load_settings

logger = logging.getLogger(__name__)


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


def _parse_since(value: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue monitoring batch commands")
    parser.add_argument(
        "--dsn",
        default=os.getenv("DATABASE_URL"),
        help="PostgreSQL connection string (defaults to DATABASE_URL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Analyse stored messages")
    run.add_argument("--conversation-id", type=int, help="Limit to one conversation")
    run.add_argument("--since", type=_parse_since, help="Only messages at or after this ISO time")

    embed = sub.add_parser("embed", help="Embed knowledge entries")
    embed.add_argument("--force", action="store_true", help="Re-embed entries that already have a vector")

    sub.add_parser("sweep", help="Time out issues past their deadline")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.dsn:
        parser.error("--dsn is required (or set DATABASE_URL)")

    settings = load_settings()
    repository = PostgresMonitorRepository.from_dsn(args.dsn)
    try:
        if args.command == "run":
            service = build_analysis_service(repository, settings)
            result = service.run_analysis(args.conversation_id, args.since)
            for key, value in result.as_dict().items():
                _echo(f"{key}: {value}")
        elif args.command == "embed":
            service = build_embedding_service(settings)
            stats = embed_all_entries(
                repository,
                service,
                force=args.force,
                batch_size=settings.embedding_batch_size,
            )
            coverage = embedding_coverage(repository)
            _echo(f"embedded: {stats.success}  failed: {stats.failed}  skipped: {stats.skipped}")
            _echo(
                f"coverage: {coverage['embedded']}/{coverage['total']} ({coverage['percentage']}%)"
            )
        else:
            expired = build_lifecycle(repository, settings).sweep_timeouts()
            _echo(f"timed out: {expired}")
    finally:
        repository.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Operator search test against the knowledge base.

Runs the same retrieval the auto-reply gate uses and prints whether an
answer was found, its confidence and where it came from. The attempt is
written to the auto-reply log like any other search.
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from issuewatch.postgres import PostgresMonitorRepository
from issuewatch.services import build_retrieval_engine
from issuewatch.settings import load_settings

logger = logging.getLogger(__name__)


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Search the knowledge base")
    parser.add_argument("--q", type=str, required=True, help="Question to search for")
    parser.add_argument(
        "--conversation-id",
        type=int,
        help="Apply this conversation's knowledge categories",
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("DATABASE_URL"),
        help="PostgreSQL connection string (defaults to DATABASE_URL)",
    )
    args = parser.parse_args(argv)
    if not args.dsn:
        parser.error("--dsn is required (or set DATABASE_URL)")

    repository = PostgresMonitorRepository.from_dsn(args.dsn)
    try:
        engine = build_retrieval_engine(repository, load_settings())
        result = engine.search_knowledge(args.q, args.conversation_id)
    finally:
        repository.close()

    _echo("=" * 80)
    _echo(f"Query: {args.q!r}")
    _echo(f"Matched: {'yes' if result.matched else 'no'}")
    _echo(f"Confidence: {result.confidence:.1f}")
    if result.source:
        _echo(f"Source: {result.source}{' (generated)' if result.is_generated else ''}")
    if result.category:
        _echo(f"Category: {result.category}")
    _echo("-" * 80)
    _echo(result.answer or "(no answer)")
    _echo("=" * 80)
    return 0 if result.matched else 1


if __name__ == "__main__":
    sys.exit(main())

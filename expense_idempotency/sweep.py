"""Periodic purge of expired idempotency records.

Correctness never depends on this running: the guard already ignores
expired records at lookup time. The sweep only reclaims space.
"""

import argparse
import logging

from .config import Settings, configure_logging, get_settings
from .db import create_schema, make_engine, make_session_factory
from .exceptions import StoreError
from .guard import IdempotencyGuard
from .handler import build_store

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="expenses-sweep",
        description="Delete expired idempotency records",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override EXPENSES_DATABASE_URL",
    )
    args = parser.parse_args(argv)

    settings = settings or get_settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})
    configure_logging(settings.log_level, json_output=settings.log_json)

    session_factory = None
    if settings.idempotency_store == "sql":
        engine = make_engine(settings.database_url)
        create_schema(engine)
        session_factory = make_session_factory(engine)
    store = build_store(settings, session_factory)

    try:
        count = IdempotencyGuard(store).purge_expired()
    except StoreError:
        logger.exception("Sweep failed")
        return 1

    print(f"Deleted {count} expired idempotency record(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Framework-free request handlers for the expense API.

An HTTP layer extracts the ``Idempotency-Key`` header and the decoded
JSON body, calls these handlers and writes ``Response.status_code`` and
``Response.body`` back out.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .db import create_schema, make_engine, make_session_factory
from .exceptions import (
    ExpenseValidationError,
    IdempotencyError,
    KeyValidationError,
    PayloadMismatchError,
    RequestInProgressError,
    StoreError,
)
from .expenses import ExpenseService
from .guard import IdempotencyGuard, OperationResult
from .key import fingerprint
from .money import MoneyCodec
from .repository import SqlExpenseRepository
from .stores import MemoryStore, Store
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Response:
    status_code: int
    body: object
    raw: str | None = None


class ExpenseHandler:
    """Maps expense operations onto the status-code contract.

    201 created, 200 replay, 400 bad key or payload, 409 key conflict,
    500 infrastructure failure (generic body, details only in the log).
    """

    def __init__(self, guard: IdempotencyGuard, service: ExpenseService) -> None:
        self.guard = guard
        self.service = service

    def create_expense(self, idempotency_key: str | None, body: object) -> Response:
        try:
            outcome = self.guard.guard(
                idempotency_key,
                lambda: self._create(body),
                fingerprint=fingerprint(body),
            )
        except KeyValidationError as e:
            return _error(400, "Bad Request", str(e), reason=e.reason)
        except ExpenseValidationError as e:
            return _validation_error(e)
        except (PayloadMismatchError, RequestInProgressError) as e:
            return _error(409, "Conflict", str(e))
        except IdempotencyError:
            logger.exception("Idempotency bookkeeping failed")
            return _error(500, "Internal Server Error", "Failed to process idempotency check")
        except Exception:
            logger.exception("Unhandled error while creating expense")
            return _internal_error()

        return Response(outcome.status_code, outcome.body, outcome.raw)

    def list_expenses(self, category: str | None = None, sort: str | None = None) -> Response:
        try:
            expenses = self.service.list_expenses(category=category, sort=sort)
        except ExpenseValidationError as e:
            return _validation_error(e, message="Invalid query parameters")
        except StoreError:
            logger.exception("Listing expenses failed")
            return _internal_error()
        return Response(200, [e.to_response() for e in expenses])

    def categories(self) -> Response:
        try:
            categories = self.service.categories()
        except StoreError:
            logger.exception("Listing categories failed")
            return _internal_error()
        return Response(200, categories)

    def summary(self) -> Response:
        try:
            summary = self.service.summary()
        except StoreError:
            logger.exception("Summarizing expenses failed")
            return _internal_error()
        return Response(200, [s.to_dict() for s in summary])

    def health(self) -> Response:
        return Response(
            200,
            {
                "status": "ok",
                "timestamp": utcnow().isoformat(),
                "service": "expense-tracker-api",
            },
        )

    def _create(self, body: object) -> OperationResult:
        draft = self.service.validate(body)
        expense = self.service.create_expense(draft)
        return OperationResult(expense.to_response(), status_code=201)


def build_handler(
    settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> ExpenseHandler:
    """Wire stores, guard, codec and service from settings."""
    settings = settings or get_settings()

    if session_factory is None:
        engine = make_engine(settings.database_url)
        create_schema(engine)
        session_factory = make_session_factory(engine)

    guard = IdempotencyGuard(
        build_store(settings, session_factory),
        ttl=timedelta(hours=settings.idempotency_ttl_hours),
        on_mismatch=settings.on_payload_mismatch,
        claim_first=settings.claim_first,
    )
    service = ExpenseService(
        SqlExpenseRepository(session_factory), MoneyCodec(settings.amount_ceiling)
    )
    return ExpenseHandler(guard, service)


def build_store(settings: Settings, session_factory: sessionmaker | None = None) -> Store:
    """Idempotency store named by ``settings.idempotency_store``.

    Raises:
        ValueError: redis without a URL, or sql without a session factory
    """
    if settings.idempotency_store == "memory":
        return MemoryStore()

    if settings.idempotency_store == "redis":
        if not settings.redis_url:
            raise ValueError("EXPENSES_REDIS_URL is required for the redis store")
        from redis import Redis

        from .stores.redis import RedisStore

        return RedisStore(Redis.from_url(settings.redis_url), prefix=settings.redis_prefix)

    if session_factory is None:
        raise ValueError("The sql store needs a session factory")
    from .stores.sql import SqlStore

    return SqlStore(session_factory)


def _error(status_code: int, error: str, message: str, **extra: object) -> Response:
    return Response(status_code, {"error": error, "message": message, **extra})


def _internal_error() -> Response:
    return _error(500, "Internal Server Error", "An unexpected error occurred")


def _validation_error(
    exc: ExpenseValidationError, message: str = "Invalid request data"
) -> Response:
    return _error(
        400,
        "Validation Error",
        message,
        details=[e.to_dict() for e in exc.errors],
    )

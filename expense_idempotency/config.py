"""Configuration via environment variables."""

import logging
import sys
from decimal import Decimal
from functools import lru_cache
from typing import Literal

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EXPENSES_",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///expenses.db"

    # Idempotency records: "sql" shares the database, "redis" needs redis_url
    idempotency_store: Literal["sql", "redis", "memory"] = "sql"
    redis_url: str | None = None
    redis_prefix: str = "idempotency:"
    idempotency_ttl_hours: float = Field(default=24, gt=0)
    on_payload_mismatch: Literal["replay", "raise"] = "replay"
    claim_first: bool = False

    # Money
    amount_ceiling: Decimal = Field(default=Decimal("10000000"), gt=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Route stdlib logging through structlog renderers.

    Module loggers stay plain ``logging.getLogger(__name__)``; their
    records pass through the same processor chain as structlog's own.

    Args:
        log_level: Logging level string (debug/info/warning/error)
        json_output: JSON lines if True, console rendering otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from orderbot.core.config import DATABASE_URL, IS_PROD

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"

REQUIRED_TABLES = (
    "restaurants",
    "menu_items",
    "conversation_states",
    "carts",
    "cart_items",
    "pending_items",
    "message_debounce_queue",
    "agent_configs",
)


def validate_database_environment() -> None:
    if IS_PROD and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def ensure_schema_present(engine: Engine) -> None:
    """Em produção o schema vem do Alembic; aqui só conferimos que ele existe."""
    existing = set(inspect(engine).get_table_names())
    missing = [table for table in REQUIRED_TABLES if table not in existing]
    if missing:
        logger.critical("%s missing tables=%s", MIGRATIONS_PREFIX, ",".join(missing))
        raise RuntimeError(f"Database schema incomplete; run alembic upgrade head (missing: {', '.join(missing)})")
    logger.info("%s schema ok", MIGRATIONS_PREFIX)

"""schema inicial do orderbot (restaurantes, menu, sessões, fila de debounce, agente)"""
from __future__ import annotations

from alembic import op

from orderbot.core.database import Base
import orderbot.models  # noqa: F401

revision = "0001_create_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())

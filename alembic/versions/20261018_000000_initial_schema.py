"""Initial schema - create all tables from current models.

Creates upload batches, bank transactions, company entries, reconciliation
matches and deletion requests for a fresh database.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from SQLAlchemy model definitions."""
    from ledgermatch.database.db_configs import Base

    # Import all models to ensure they're registered with Base.metadata
    from ledgermatch.sqlModels import uploadEntities  # noqa: F401
    from ledgermatch.sqlModels import ledgerEntities  # noqa: F401
    from ledgermatch.sqlModels import reconciliationEntities  # noqa: F401
    from ledgermatch.sqlModels import operationEntities  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    """Drop all tables."""
    from ledgermatch.database.db_configs import Base

    from ledgermatch.sqlModels import uploadEntities  # noqa: F401
    from ledgermatch.sqlModels import ledgerEntities  # noqa: F401
    from ledgermatch.sqlModels import reconciliationEntities  # noqa: F401
    from ledgermatch.sqlModels import operationEntities  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)

"""Add reservation state, attempt counter and response status to idempotency_keys

Revision ID: d4e6f8a0c2b3
Revises: a1f3c5e7b901
Create Date: 2025-11-12

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "d4e6f8a0c2b3"
down_revision: Union[str, Sequence[str], None] = "a1f3c5e7b901"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Rows written before this revision always hold a finished response.
    op.add_column(
        "idempotency_keys",
        sa.Column("state", sa.String(length=16), nullable=False, server_default="completed"),
    )
    op.add_column("idempotency_keys", sa.Column("response_status", sa.Integer(), nullable=True))
    op.add_column(
        "idempotency_keys",
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column("idempotency_keys", "attempt")
    op.drop_column("idempotency_keys", "response_status")
    op.drop_column("idempotency_keys", "state")

"""create voters and voter_fields tables

Revision ID: 4c1f0a9d2e57
Revises:
Create Date: 2026-10-19 10:12:41.208315

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "4c1f0a9d2e57"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
    CREATE TABLE IF NOT EXISTS voters (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_voters_data ON voters USING GIN (data);
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS voter_fields (
        name VARCHAR(64) PRIMARY KEY,
        type VARCHAR(20) NOT NULL,
        required BOOLEAN NOT NULL DEFAULT FALSE,
        default_value JSONB,
        label VARCHAR(255),
        description TEXT,
        visible BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
    DROP TABLE IF EXISTS voter_fields CASCADE;
    DROP TABLE IF EXISTS voters CASCADE;
    """)

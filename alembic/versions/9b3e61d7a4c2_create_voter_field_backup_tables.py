"""create voter field backup tables

Revision ID: 9b3e61d7a4c2
Revises: 4c1f0a9d2e57
Create Date: 2026-10-19 15:40:07.512903

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "9b3e61d7a4c2"
down_revision: Union[str, Sequence[str], None] = "4c1f0a9d2e57"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
    CREATE TABLE IF NOT EXISTS voter_field_backup_runs (
        id VARCHAR(128) PRIMARY KEY,
        field_name VARCHAR(64) NOT NULL,
        operation VARCHAR(50) NOT NULL,
        target_type VARCHAR(20),
        previous_type VARCHAR(20),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_voter_field_backup_runs_field ON voter_field_backup_runs(field_name);
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS voter_field_backups (
        run_id VARCHAR(128) NOT NULL REFERENCES voter_field_backup_runs(id) ON DELETE CASCADE,
        entity_id TEXT NOT NULL,
        prior_value JSONB,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (run_id, entity_id)
    );
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
    DROP TABLE IF EXISTS voter_field_backups CASCADE;
    DROP TABLE IF EXISTS voter_field_backup_runs CASCADE;
    """)

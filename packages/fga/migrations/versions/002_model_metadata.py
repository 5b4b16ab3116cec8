"""Record name, DSL source and schema digest on authorization models.

Revision ID: 002_model_metadata
Revises: 001_initial_tables
Create Date: 2025-04-11
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '002_model_metadata'
down_revision = '001_initial_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add model metadata columns."""

    with op.batch_alter_table('fga_authorization_model') as batch:
        batch.add_column(
            sa.Column('name', sa.String(64), nullable=False, server_default='default')
        )
        batch.add_column(
            sa.Column('schema_source', sa.Text(), nullable=False, server_default='')
        )
        batch.add_column(
            sa.Column('schema_hash', sa.String(64), nullable=False, server_default='')
        )


def downgrade() -> None:
    """Drop model metadata columns."""

    with op.batch_alter_table('fga_authorization_model') as batch:
        batch.drop_column('schema_hash')
        batch.drop_column('schema_source')
        batch.drop_column('name')

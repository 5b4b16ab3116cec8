"""Create store, authorization model and tuple tables.

Revision ID: 001_initial_tables
Revises:
Create Date: 2025-03-02
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '001_initial_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the datastore tables."""

    op.create_table(
        'fga_store',
        sa.Column('id', sa.String(26), primary_key=True),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_fga_store_name', 'fga_store', ['name'])

    op.create_table(
        'fga_authorization_model',
        sa.Column('id', sa.String(26), primary_key=True),
        sa.Column('store_id', sa.String(26), sa.ForeignKey('fga_store.id'), nullable=False),
        sa.Column('schema_version', sa.String(8), nullable=False),
        sa.Column('serialized', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_fga_authorization_model_store_id', 'fga_authorization_model', ['store_id']
    )

    op.create_table(
        'fga_tuple',
        sa.Column('store_id', sa.String(26), nullable=False),
        sa.Column('object_type', sa.String(128), nullable=False),
        sa.Column('object_id', sa.String(255), nullable=False),
        sa.Column('relation', sa.String(50), nullable=False),
        sa.Column('subject', sa.String(512), nullable=False),
        sa.Column('inserted_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint(
            'store_id', 'object_type', 'object_id', 'relation', 'subject',
            name='pk_fga_tuple',
        ),
    )
    op.create_index('ix_fga_tuple_subject', 'fga_tuple', ['store_id', 'subject'])


def downgrade() -> None:
    """Drop the datastore tables."""

    op.drop_index('ix_fga_tuple_subject', table_name='fga_tuple')
    op.drop_table('fga_tuple')
    op.drop_index('ix_fga_authorization_model_store_id', table_name='fga_authorization_model')
    op.drop_table('fga_authorization_model')
    op.drop_index('ix_fga_store_name', table_name='fga_store')
    op.drop_table('fga_store')

"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=255), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('brand', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('origin_platform', sa.String(length=64), nullable=True),
        sa.Column('origin_url', sa.Text(), nullable=True),
        sa.Column(
            'prices',
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode', name='uq_products_barcode')
    )

    # Scan history table
    op.create_table(
        'scan_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('scanned_at', sa.DateTime(), nullable=False),
        sa.Column('latitude', sa.Numeric(precision=10, scale=8), nullable=True),
        sa.Column('longitude', sa.Numeric(precision=11, scale=8), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE')
    )

    # Create indexes
    op.create_index('ix_scan_history_product_id', 'scan_history', ['product_id'])
    op.create_index('ix_scan_history_scanned_at', 'scan_history', ['scanned_at'])
    op.create_index('ix_scan_history_user_scanned_at', 'scan_history', ['user_id', 'scanned_at'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_scan_history_user_scanned_at', table_name='scan_history')
    op.drop_index('ix_scan_history_scanned_at', table_name='scan_history')
    op.drop_index('ix_scan_history_product_id', table_name='scan_history')

    # Drop tables
    op.drop_table('scan_history')
    op.drop_table('products')

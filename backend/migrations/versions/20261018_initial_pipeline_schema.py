"""Initial pipeline schema: SKUs, stage ledgers, returns, stock cache, audit

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. users and skus
2. Stage ledgers: fabric, cutting, production, finishing, warehouse, sales
3. return_records and return_processing
4. warehouse_stock (cache rebuilt from the warehouse and sales ledgers)
5. activity_log and import_logs
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _event_columns():
    return [
        sa.Column('record_date', sa.Date(), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ==========================================================================
    # 1. USERS AND SKUS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('skus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('fabric_type', sa.String(length=128), nullable=True),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('barcode', sa.String(length=128), nullable=True),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('avg_consumption_cm', sa.Integer(), nullable=True),
        sa.Column('last_ledger_write_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_skus_sku'),
        sa.UniqueConstraint('barcode', name='uq_skus_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_skus_product_name', 'skus', ['product_name'])

    # ==========================================================================
    # 2. STAGE LEDGERS
    # ==========================================================================
    op.create_table('fabric_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('fabric_type', sa.String(length=128), nullable=False),
        sa.Column('fabric_name', sa.String(length=255), nullable=True),
        sa.Column('fabric_width_cm', sa.Integer(), nullable=True),
        sa.Column('total_meters_cm', sa.Integer(), nullable=True),
        sa.Column('meters_received_cm', sa.Integer(), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('cutting_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('total_fabric_used_cm', sa.Integer(), nullable=False),
        sa.Column('avg_fabric_per_piece_cm', sa.Integer(), nullable=True),
        sa.Column('wastage_bps', sa.Integer(), nullable=True),
        sa.Column('actual_fabric_per_piece_cm', sa.Integer(), nullable=True),
        sa.Column('total_pieces_cut', sa.Integer(), nullable=False),
        sa.Column('rejected_fabric_cm', sa.Integer(), nullable=True),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('production_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('total_stitched', sa.Integer(), nullable=False),
        sa.Column('rejected_pieces', sa.Integer(), nullable=False, server_default='0'),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('finishing_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('finished_pieces', sa.Integer(), nullable=False),
        sa.Column('rejected_pieces', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='production'),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("source IN ('production', 'return')", name='ck_finishing_records_source'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 3. RETURNS (before warehouse_records, which references them)
    # ==========================================================================
    op.create_table('return_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('order_id', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('return_type', sa.String(length=16), nullable=False),
        sa.Column('ecommerce_subtype', sa.String(length=32), nullable=True),
        sa.Column('return_condition', sa.String(length=32), nullable=False),
        sa.Column('return_source_panel', sa.String(length=128), nullable=False),
        sa.Column('return_reason', sa.Text(), nullable=True),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_return_records_order_id'),
        sa.CheckConstraint('quantity > 0', name='ck_return_records_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_records_condition', 'return_records', ['return_condition'])
    op.create_index('ix_return_records_panel', 'return_records', ['return_source_panel'])

    op.create_table('return_processing',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), sa.ForeignKey('return_records.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('processed_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('finishing_record_id', sa.Integer(), sa.ForeignKey('finishing_records.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_id', name='uq_return_processing_return'),
        sa.CheckConstraint(
            "status IN ('pending', 'refinished', 'rejected')", name='ck_return_processing_status'
        ),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_processing_status', 'return_processing', ['status'])
    op.create_index(
        'ix_return_processing_finishing_record_id', 'return_processing', ['finishing_record_id']
    )

    op.create_table('warehouse_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('quantity_received', sa.Integer(), nullable=False),
        sa.Column('storage_location', sa.String(length=255), nullable=True),
        sa.Column('return_id', sa.Integer(), sa.ForeignKey('return_records.id'), nullable=True),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_warehouse_records_return_id', 'warehouse_records', ['return_id'])

    op.create_table('sales_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('quantity_sold', sa.Integer(), nullable=False),
        sa.Column('platform_name', sa.String(length=128), nullable=False),
        sa.Column('order_id', sa.String(length=128), nullable=True),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        *_event_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_records_platform', 'sales_records', ['platform_name'])

    for table in (
        'fabric_records', 'cutting_records', 'production_records',
        'finishing_records', 'warehouse_records', 'sales_records',
    ):
        op.create_index(f'ix_{table}_sku_id', table, ['sku_id'])
        op.create_index(f'ix_{table}_sku_date', table, ['sku_id', 'record_date'])
    op.create_index('ix_return_records_sku_id', 'return_records', ['sku_id'])

    # ==========================================================================
    # 4. WAREHOUSE STOCK CACHE
    # ==========================================================================
    op.create_table('warehouse_stock',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('available_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('storage_location', sa.Text(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku_id', name='uq_warehouse_stock_sku'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 5. AUDIT
    # ==========================================================================
    op.create_table('activity_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=True),
        sa.Column('module', sa.String(length=32), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_activity_log_sku_time', 'activity_log', ['sku_id', 'created_at'])
    op.create_index('ix_activity_log_module_action', 'activity_log', ['module', 'action'])

    op.create_table('import_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('import_type', sa.String(length=32), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('total_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('imported_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_import_logs_import_type', 'import_logs', ['import_type'])


def downgrade():
    op.drop_table('import_logs')
    op.drop_table('activity_log')
    op.drop_table('warehouse_stock')
    op.drop_table('sales_records')
    op.drop_table('warehouse_records')
    op.drop_table('return_processing')
    op.drop_table('return_records')
    op.drop_table('finishing_records')
    op.drop_table('production_records')
    op.drop_table('cutting_records')
    op.drop_table('fabric_records')
    op.drop_table('skus')
    op.drop_table('users')

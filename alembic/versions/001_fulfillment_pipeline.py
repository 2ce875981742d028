"""Create fulfillment pipeline schema

Revision ID: 001_fulfillment
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision = '001_fulfillment'
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    """Create users, warehouses, catalog, inventory, cart, order and consignment tables"""

    # ====================
    # USERS AND ADDRESSES
    # ====================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('business_name', sa.String(200), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, comment='ADMIN, OPS, BUYER, DRIVER'),
        sa.Column('is_active', sa.Boolean, nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_users_phone', 'users', ['phone'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'addresses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('label', sa.String(100), nullable=True),
        sa.Column('line1', sa.String(255), nullable=False),
        sa.Column('line2', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(100), nullable=False),
        sa.Column('pincode', sa.String(10), nullable=False),
        sa.Column('latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('longitude', sa.Numeric(11, 8), nullable=True),
        sa.Column('is_default', sa.Boolean, nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])

    op.create_table(
        'warehouses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('address_line1', sa.String(255), nullable=False),
        sa.Column('address_line2', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(100), nullable=False),
        sa.Column('pincode', sa.String(10), nullable=False),
        sa.Column('latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('longitude', sa.Numeric(11, 8), nullable=True),
        sa.Column('address_id', sa.Uuid(), sa.ForeignKey('addresses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_warehouses_code', 'warehouses', ['code'], unique=True)

    op.create_table(
        'warehouse_ops_assignments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=False),
        _timestamp('created_at'),
        sa.UniqueConstraint('user_id', 'warehouse_id', name='uq_ops_assignment_user_warehouse'),
    )
    op.create_index('ix_warehouse_ops_assignments_user_id', 'warehouse_ops_assignments', ['user_id'])
    op.create_index('ix_warehouse_ops_assignments_warehouse_id', 'warehouse_ops_assignments', ['warehouse_id'])

    op.create_table(
        'driver_profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('license_number', sa.String(50), nullable=True),
        sa.Column('vehicle_number', sa.String(20), nullable=True),
        sa.Column('vehicle_type', sa.String(50), nullable=True),
        sa.Column('is_available', sa.Boolean, nullable=False),
        sa.Column('current_latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('current_longitude', sa.Numeric(11, 8), nullable=True),
        _timestamp('location_updated_at', nullable=True),
    )

    # ====================
    # CATALOG AND INVENTORY
    # ====================
    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sku', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('moq', sa.Integer, nullable=False, comment='Minimum order quantity'),
        sa.Column('is_active', sa.Boolean, nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    op.create_table(
        'inventory',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('reserved_quantity', sa.Integer, nullable=False),
        _timestamp('updated_at'),
        sa.UniqueConstraint('warehouse_id', 'product_id', name='uq_inventory_warehouse_product'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_inventory_reserved_non_negative'),
        sa.CheckConstraint('reserved_quantity <= quantity', name='ck_inventory_reserved_within_quantity'),
    )
    op.create_index('ix_inventory_warehouse_id', 'inventory', ['warehouse_id'])
    op.create_index('ix_inventory_product_id', 'inventory', ['product_id'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('buyer_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.UniqueConstraint('buyer_id', 'product_id', 'warehouse_id', name='uq_cart_buyer_product_warehouse'),
    )
    op.create_index('ix_cart_items_buyer_id', 'cart_items', ['buyer_id'])

    # ====================
    # ORDERS
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_number', sa.String(30), nullable=False),
        sa.Column('buyer_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('delivery_address_id', sa.Uuid(), sa.ForeignKey('addresses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('inventory_state', sa.String(20), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        _timestamp('payment_date', nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('requested_delivery_date', sa.Date, nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        _timestamp('confirmed_at', nullable=True),
        _timestamp('cancelled_at', nullable=True),
        _timestamp('delivered_at', nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_order_buyer_status', 'orders', ['buyer_id', 'status'])
    op.create_index('ix_order_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_sku', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_warehouse_id', 'order_items', ['warehouse_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=False),
        sa.Column('changed_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # ====================
    # CONSIGNMENTS
    # ====================
    op.create_table(
        'consignments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('consignment_number', sa.String(30), nullable=False),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('driver_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('pickup_address_id', sa.Uuid(), sa.ForeignKey('addresses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('delivery_address_id', sa.Uuid(), sa.ForeignKey('addresses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('estimated_delivery_date', sa.Date, nullable=True),
        sa.Column('actual_delivery_date', sa.Date, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        _timestamp('delivered_at', nullable=True),
        sa.UniqueConstraint('order_id', 'warehouse_id', name='uq_consignment_order_warehouse'),
    )
    op.create_index('ix_consignments_consignment_number', 'consignments', ['consignment_number'], unique=True)
    op.create_index('ix_consignments_order_id', 'consignments', ['order_id'])
    op.create_index('ix_consignments_warehouse_id', 'consignments', ['warehouse_id'])
    op.create_index('ix_consignments_status', 'consignments', ['status'])
    op.create_index('ix_consignment_driver_status', 'consignments', ['driver_id', 'status'])

    op.create_table(
        'consignment_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('consignment_id', sa.Uuid(), sa.ForeignKey('consignments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('longitude', sa.Numeric(11, 8), nullable=True),
        sa.Column('recorded_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_consignment_events_consignment_id', 'consignment_events', ['consignment_id'])

    # ====================
    # NUMBERING AND AUDIT
    # ====================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('prefix', sa.String(10), nullable=False),
        sa.Column('sequence_date', sa.Date, nullable=False),
        sa.Column('last_value', sa.Integer, nullable=False),
        sa.UniqueConstraint('prefix', 'sequence_date', name='uq_document_sequence_prefix_date'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('resource', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.Uuid(), nullable=True),
        sa.Column('old_values', JSON_TYPE, nullable=True),
        sa.Column('new_values', JSON_TYPE, nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    """Drop all pipeline tables in reverse dependency order"""
    for table in (
        'audit_logs',
        'document_sequences',
        'consignment_events',
        'consignments',
        'order_status_history',
        'order_items',
        'orders',
        'cart_items',
        'inventory',
        'products',
        'driver_profiles',
        'warehouse_ops_assignments',
        'warehouses',
        'addresses',
        'users',
    ):
        op.drop_table(table)

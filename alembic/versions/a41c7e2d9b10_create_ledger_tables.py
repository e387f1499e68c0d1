"""Create credential, order COGS, shipment, storefront session and cache tables

Revision ID: a41c7e2d9b10
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers
revision: str = 'a41c7e2d9b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(table_name):
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    # ── provider_credentials ──
    if not _has_table('provider_credentials'):
        op.create_table(
            'provider_credentials',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('shop', sa.String(), nullable=False, index=True),
            sa.Column('provider', sa.String(), nullable=False),
            sa.Column('secrets', sa.JSON(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('last_refreshed', sa.DateTime(), nullable=True),
            sa.Column('cached_directory', sa.JSON(), nullable=True),
            sa.Column('directory_refreshed_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
            sa.UniqueConstraint('shop', 'provider', name='uq_provider_credentials_shop_provider'),
        )

    # ── order_cogs / order_items ──
    if not _has_table('order_cogs'):
        op.create_table(
            'order_cogs',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('shop', sa.String(), nullable=False, index=True),
            sa.Column('order_id', sa.String(), nullable=False),
            sa.Column('order_name', sa.String(), nullable=True),
            sa.Column('total_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('total_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('profit', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
            sa.Column('confirmed_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('shop', 'order_id', name='uq_order_cogs_shop_order'),
        )

    if not _has_table('order_items'):
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_cogs_id', sa.Integer(),
                      sa.ForeignKey('order_cogs.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('product_id', sa.String(), nullable=True, index=True),
            sa.Column('variant_id', sa.String(), nullable=True),
            sa.Column('title', sa.String(), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('price', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('total_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('total_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('profit', sa.Numeric(12, 2), nullable=False, server_default='0'),
        )

    # ── shipments ──
    if not _has_table('shipments'):
        op.create_table(
            'shipments',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('shop', sa.String(), nullable=False, index=True),
            sa.Column('tracking', sa.String(), nullable=False),
            sa.Column('external_id', sa.String(), nullable=False),
            sa.Column('order_id', sa.String(), nullable=True),
            # Recipient
            sa.Column('client', sa.String(), nullable=False),
            sa.Column('mobile_a', sa.String(), nullable=False),
            sa.Column('mobile_b', sa.String(), nullable=True),
            sa.Column('address', sa.String(), nullable=False),
            sa.Column('wilaya_id', sa.Integer(), nullable=False),
            sa.Column('wilaya', sa.String(), nullable=False, server_default=''),
            sa.Column('commune', sa.String(), nullable=False),
            sa.Column('product_description', sa.String(), nullable=False),
            sa.Column('note', sa.String(), nullable=True),
            sa.Column('delivery_type', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('package_type', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('confirmed', sa.Integer(), nullable=False, server_default='1'),
            # Lifecycle
            sa.Column('status_id', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('status', sa.String(), nullable=False),
            # Money
            sa.Column('total', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('cancel_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('total_cost', sa.Numeric(12, 2), nullable=True),
            sa.Column('total_revenue', sa.Numeric(12, 2), nullable=True),
            sa.Column('profit', sa.Numeric(12, 2), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('shop', 'tracking', name='uq_shipments_shop_tracking'),
        )
        op.create_index('ix_shipments_shop_updated_at', 'shipments', ['shop', 'updated_at'])
        op.create_index('ix_shipments_shop_order_id', 'shipments', ['shop', 'order_id'])

    # ── storefront_sessions ──
    if not _has_table('storefront_sessions'):
        op.create_table(
            'storefront_sessions',
            sa.Column('id', sa.String(), primary_key=True),
            sa.Column('shop', sa.String(), nullable=False, index=True),
            sa.Column('state', sa.String(), nullable=True),
            sa.Column('is_online', sa.Boolean(), server_default='0'),
            sa.Column('scope', sa.String(), nullable=True),
            sa.Column('expires', sa.DateTime(), nullable=True),
            sa.Column('access_token', sa.String(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        )

    # ── app_cache ──
    if not _has_table('app_cache'):
        op.create_table(
            'app_cache',
            sa.Column('key', sa.String(), primary_key=True),
            sa.Column('value', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), index=True),
        )


def downgrade() -> None:
    for table_name in ('app_cache', 'storefront_sessions', 'shipments', 'order_items',
                       'order_cogs', 'provider_credentials'):
        if _has_table(table_name):
            op.drop_table(table_name)

"""Initial marketplace schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, ENUM


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    settlement_currency_enum = ENUM('XRP', 'RLUSD', name='settlement_currency', create_type=False)
    offer_status_enum = ENUM('OPEN', 'USED', name='offer_status', create_type=False)
    order_status_enum = ENUM('PAID', 'REDEEM_REQUESTED', 'FULFILLED', name='order_status', create_type=False)
    bind = op.get_bind()
    settlement_currency_enum.create(bind, checkfirst=True)
    offer_status_enum.create(bind, checkfirst=True)
    order_status_enum.create(bind, checkfirst=True)

    # Create listings table
    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('submission_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_cid', sa.String(), nullable=True),
        sa.Column('metadata_cid', sa.String(), nullable=True),
        sa.Column('nft_token_id', sa.String(), nullable=True),
        sa.Column('creator_wallet', sa.String(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('website', sa.String(), nullable=True),
        sa.Column('price_xrp', sa.Numeric(20, 6), nullable=True),
        sa.Column('price_rlusd', sa.Numeric(20, 6), nullable=True),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('sold_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('minted', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('delisted', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity >= 0', name='ck_listing_quantity_non_negative'),
        sa.CheckConstraint('sold_count >= 0', name='ck_listing_sold_count_non_negative'),
    )
    op.create_index('ix_listings_public', 'listings', ['minted', 'delisted', 'quantity'], unique=False)

    # Create sale_offers table
    op.create_table(
        'sale_offers',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('nft_token_id', sa.String(), nullable=False),
        sa.Column('offer_index', sa.String(), nullable=False),
        sa.Column('currency', settlement_currency_enum, nullable=False),
        sa.Column('status', offer_status_enum, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('offer_index', name='uq_sale_offer_offer_index'),
    )
    op.create_index('ix_sale_offers_listing_id', 'sale_offers', ['listing_id'], unique=False)
    # One OPEN offer per (listing, asset, currency); USED offers stay as history
    op.create_index(
        'uq_sale_offers_open_listing_asset_currency', 'sale_offers',
        ['listing_id', 'nft_token_id', 'currency'], unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('buyer_account', sa.String(), nullable=True),
        sa.Column('price', sa.Numeric(20, 6), nullable=False),
        sa.Column('currency', settlement_currency_enum, nullable=False),
        sa.Column('status', order_status_enum, nullable=False),
        sa.Column('payload_uuid', sa.String(), nullable=True),
        sa.Column('tx_hash', sa.String(), nullable=True),
        sa.Column('offer_index', sa.String(), nullable=True),
        sa.Column('order_metadata', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('price > 0', name='ck_order_price_positive'),
        sa.CheckConstraint(
            'payload_uuid IS NOT NULL OR tx_hash IS NOT NULL',
            name='ck_order_has_external_reference',
        ),
    )
    # One order per external reference; these are the settlement idempotency keys
    op.create_index(
        'uq_orders_payload_uuid', 'orders', ['payload_uuid'], unique=True,
        postgresql_where=sa.text('payload_uuid IS NOT NULL'),
    )
    op.create_index(
        'uq_orders_tx_hash', 'orders', ['tx_hash'], unique=True,
        postgresql_where=sa.text('tx_hash IS NOT NULL'),
    )
    op.create_index('ix_orders_listing_id', 'orders', ['listing_id'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_listing_id', table_name='orders')
    op.drop_index('uq_orders_tx_hash', table_name='orders')
    op.drop_index('uq_orders_payload_uuid', table_name='orders')
    op.drop_table('orders')

    op.drop_index('uq_sale_offers_open_listing_asset_currency', table_name='sale_offers')
    op.drop_index('ix_sale_offers_listing_id', table_name='sale_offers')
    op.drop_table('sale_offers')

    op.drop_index('ix_listings_public', table_name='listings')
    op.drop_table('listings')

    op.execute("DROP TYPE IF EXISTS order_status")
    op.execute("DROP TYPE IF EXISTS offer_status")
    op.execute("DROP TYPE IF EXISTS settlement_currency")

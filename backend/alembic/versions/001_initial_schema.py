"""Initial schema — token_supply, reservations, investment_transactions, investments,
fee_schedules, payment_webhook_events.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Supply buckets are guarded by CHECK constraints so a buggy UPDATE fails instead of
overselling: available >= 0, reserved >= 0, available + reserved <= total.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "token_supply",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("total_supply", sa.Integer, nullable=False),
        sa.Column("available_supply", sa.Integer, nullable=False),
        sa.Column("reserved_supply", sa.Integer, nullable=False, server_default="0"),
        sa.Column("token_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("minimum_investment", sa.Integer, nullable=False, server_default="1"),
        sa.Column("maximum_investment", sa.Integer, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_price_update", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_token_supply"),
        sa.UniqueConstraint("property_id", name="uq_token_supply_property_id"),
        sa.CheckConstraint("available_supply >= 0", name="ck_token_supply_available_non_negative"),
        sa.CheckConstraint("reserved_supply >= 0", name="ck_token_supply_reserved_non_negative"),
        sa.CheckConstraint(
            "available_supply + reserved_supply <= total_supply",
            name="ck_token_supply_buckets_within_total",
        ),
        sa.CheckConstraint("total_supply > 0", name="ck_token_supply_total_positive"),
        sa.CheckConstraint("minimum_investment >= 1", name="ck_token_supply_minimum_positive"),
    )

    op.create_table(
        "reservations",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("token_amount", sa.Integer, nullable=False),
        sa.Column("token_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("gross_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("payment_ref", sa.String(128), nullable=True),
        sa.Column("release_reason", sa.String(32), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_reservations"),
        sa.ForeignKeyConstraint(
            ["property_id"], ["token_supply.property_id"],
            name="fk_reservations_property_id_token_supply", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_reservations_idempotency_key"),
        sa.CheckConstraint("token_amount > 0", name="ck_reservations_token_amount_positive"),
    )
    op.create_index("ix_reservations_property_id", "reservations", ["property_id"])
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"])
    op.create_index(
        "ix_reservations_status_expires_at", "reservations", ["status", "expires_at"],
    )

    op.create_table(
        "investment_transactions",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("reservation_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False, server_default="purchase"),
        sa.Column("token_amount", sa.Integer, nullable=False),
        sa.Column("token_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fees_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("payment_currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("payment_ref", sa.String(128), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_investment_transactions"),
        sa.ForeignKeyConstraint(
            ["reservation_id"], ["reservations.id"],
            name="fk_investment_transactions_reservation_id_reservations",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("payment_ref", name="uq_investment_transactions_payment_ref"),
    )
    op.create_index(
        "ix_investment_transactions_reservation_id",
        "investment_transactions", ["reservation_id"],
    )
    op.create_index(
        "ix_investment_transactions_user_id", "investment_transactions", ["user_id"],
    )

    op.create_table(
        "investments",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("reservation_id", UUID(as_uuid=True), nullable=False),
        sa.Column("investment_transaction_id", UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("token_amount", sa.Integer, nullable=False),
        sa.Column("price_per_token", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("payment_ref", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="tokens_issued"),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_investments"),
        sa.ForeignKeyConstraint(
            ["reservation_id"], ["reservations.id"],
            name="fk_investments_reservation_id_reservations", ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["investment_transaction_id"], ["investment_transactions.id"],
            name="fk_investments_investment_transaction_id_investment_transactions",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("reservation_id", name="uq_investments_reservation_id"),
    )
    op.create_index("ix_investments_user_id", "investments", ["user_id"])
    op.create_index("ix_investments_property_id", "investments", ["property_id"])

    op.create_table(
        "fee_schedules",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("fee_type", sa.String(32), nullable=False),
        sa.Column("percentage", sa.Numeric(7, 4), nullable=False, server_default="0"),
        sa.Column("fixed_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("min_fee", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("max_fee", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_fee_schedules"),
    )
    op.create_index("ix_fee_schedules_fee_type", "fee_schedules", ["fee_type"])

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payment_ref", sa.String(128), nullable=True),
        sa.Column("processing_status", sa.String(20), nullable=False),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column("raw_event", sa.JSON, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_payment_webhook_events"),
        sa.UniqueConstraint("event_id", name="uq_payment_webhook_events_event_id"),
    )
    op.create_index(
        "ix_payment_webhook_events_payment_ref", "payment_webhook_events", ["payment_ref"],
    )


def downgrade() -> None:
    op.drop_table("payment_webhook_events")
    op.drop_table("fee_schedules")
    op.drop_table("investments")
    op.drop_table("investment_transactions")
    op.drop_table("reservations")
    op.drop_table("token_supply")

"""add tickets, sync cursors and inconsistency log

Revision ID: 001_ticket_ledger
Revises:
Create Date: 2026-10-19 09:00:00

Ticket rows are never deleted; redemption is a status transition.
Inconsistency rows are append-only, one per (code, event identity).
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_ticket_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    ticket_status = sa.Enum("active", "redeemed", name="ticket_status_enum")

    op.create_table(
        "tickets",
        sa.Column("ticket_id", sa.String(78), primary_key=True),
        sa.Column("owner_address", sa.String(42), nullable=False),
        sa.Column("status", ticket_status, nullable=False),
        sa.Column("last_applied_block", sa.BigInteger(), nullable=False),
        sa.Column("last_applied_log_index", sa.Integer(), nullable=False),
        sa.Column("last_tx_hash", sa.String(66), nullable=False),
        sa.Column("minted_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tickets_owner_address", "tickets", ["owner_address"])
    op.create_index("idx_tickets_owner_status", "tickets", ["owner_address", "status"])

    op.create_table(
        "sync_cursors",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("last_confirmed_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "ledger_inconsistencies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("ticket_id", sa.String(78), nullable=True),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("log_index", sa.Integer(), nullable=True),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "code", "block_number", "log_index", "tx_hash",
            name="uq_ledger_inconsistencies_event",
        ),
    )
    op.create_index("ix_ledger_inconsistencies_code", "ledger_inconsistencies", ["code"])
    op.create_index("ix_ledger_inconsistencies_ticket_id", "ledger_inconsistencies", ["ticket_id"])
    op.create_index("ix_ledger_inconsistencies_created_at", "ledger_inconsistencies", ["created_at"])


def downgrade() -> None:
    op.drop_table("ledger_inconsistencies")
    op.drop_table("sync_cursors")
    op.drop_table("tickets")
    sa.Enum(name="ticket_status_enum").drop(op.get_bind(), checkfirst=True)

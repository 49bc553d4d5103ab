"""Dispute engine tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates: disputes, dispute_transitions, event_outbox, processed_events
Enums: disputecategory, disputestage, disputestatus, offerstatus,
       resolutionoutcome, eventstatus
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── 1. Create enum types ──────────────────────────────────────────────
    op.execute("""
        CREATE TYPE disputecategory AS ENUM (
            'DESIGN_GHOSTING', 'DESIGN_QUALITY_MISMATCH', 'DESIGN_COPYRIGHT_INFRINGEMENT',
            'SHIPPING_NOT_RECEIVED', 'SHIPPING_DAMAGED', 'SHIPPING_WRONG_ITEM',
            'SHIPPING_PRINT_QUALITY', 'SHIPPING_LATE_DELIVERY', 'SHIPPING_INCOMPLETE_ORDER'
        );
    """)
    op.execute("CREATE TYPE disputestage AS ENUM ('NEGOTIATION', 'ADMIN_REVIEW', 'RESOLVED');")
    op.execute("CREATE TYPE disputestatus AS ENUM ('OPEN', 'CLOSED');")
    op.execute("CREATE TYPE offerstatus AS ENUM ('PENDING', 'ACCEPTED', 'REJECTED');")
    op.execute("""
        CREATE TYPE resolutionoutcome AS ENUM (
            'REFUNDED', 'PARTIAL_REFUND', 'RELEASED', 'DISMISSED', 'WITHDRAWN'
        );
    """)
    op.execute("CREATE TYPE eventstatus AS ENUM ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED');")

    # ── 2. Create disputes table ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE disputes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

            -- Transaction reference (exactly one)
            order_id VARCHAR(255),
            customization_request_id VARCHAR(255),

            -- Parties
            filed_by VARCHAR(255) NOT NULL,
            counterparty_id VARCHAR(255) NOT NULL,

            -- Details
            category disputecategory NOT NULL,
            description TEXT NOT NULL,
            evidence_images JSONB NOT NULL DEFAULT '[]',
            evidence_video JSONB,

            -- Lifecycle
            stage disputestage NOT NULL,
            status disputestatus NOT NULL,
            negotiation_deadline TIMESTAMPTZ NOT NULL,
            escalated_at TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,

            -- Partial refund offer
            offer_amount NUMERIC(15, 2),
            offer_proposed_by VARCHAR(255),
            offer_status offerstatus,
            offer_proposed_at TIMESTAMPTZ,
            offer_responded_at TIMESTAMPTZ,

            -- Settlement claim
            settlement_intent JSONB,
            settlement_requested_at TIMESTAMPTZ,

            -- Resolution
            resolution_outcome resolutionoutcome,
            resolution_reason TEXT,
            partial_refund_amount NUMERIC(15, 2),
            issue_strike BOOLEAN NOT NULL DEFAULT FALSE,
            admin_notes TEXT,
            resolved_by VARCHAR(255),
            resolved_at TIMESTAMPTZ,

            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_disputes_single_transaction
                CHECK ((order_id IS NULL) <> (customization_request_id IS NULL))
        );
    """)
    op.execute("CREATE INDEX ix_disputes_filed_by ON disputes (filed_by);")
    op.execute("CREATE INDEX ix_disputes_counterparty_id ON disputes (counterparty_id);")
    op.execute("CREATE INDEX ix_disputes_stage_status ON disputes (stage, status);")
    op.execute(
        "CREATE UNIQUE INDEX uq_disputes_open_order ON disputes (order_id) "
        "WHERE status = 'OPEN';"
    )
    op.execute(
        "CREATE UNIQUE INDEX uq_disputes_open_customization_request "
        "ON disputes (customization_request_id) WHERE status = 'OPEN';"
    )
    op.execute(
        "CREATE INDEX ix_disputes_pending_settlement ON disputes (settlement_requested_at) "
        "WHERE settlement_intent IS NOT NULL;"
    )

    # ── 3. Create dispute_transitions table ────────────────────────────────
    op.execute("""
        CREATE TABLE dispute_transitions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            dispute_id UUID NOT NULL REFERENCES disputes(id) ON DELETE CASCADE,
            from_stage disputestage,
            to_stage disputestage NOT NULL,
            transitioned_by VARCHAR(255) NOT NULL,
            reason TEXT,
            version INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_dispute_transitions_dispute_id ON dispute_transitions (dispute_id);")

    # ── 4. Create event_outbox table ──────────────────────────────────────
    op.execute("""
        CREATE TABLE event_outbox (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_type VARCHAR(255) NOT NULL,
            aggregate_type VARCHAR(255) NOT NULL,
            aggregate_id VARCHAR(255) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            status eventstatus NOT NULL DEFAULT 'PENDING',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 5,
            last_error TEXT,
            processed_at TIMESTAMPTZ,
            schema_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_event_outbox_status ON event_outbox (status);")
    op.execute("CREATE INDEX ix_event_outbox_event_type ON event_outbox (event_type);")
    op.execute("CREATE INDEX ix_event_outbox_aggregate ON event_outbox (aggregate_type, aggregate_id);")
    op.execute("CREATE INDEX ix_event_outbox_pending ON event_outbox (created_at) WHERE status = 'PENDING';")

    # ── 5. Create processed_events table ──────────────────────────────────
    op.execute("""
        CREATE TABLE processed_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_id UUID NOT NULL,
            event_type VARCHAR(255) NOT NULL,
            handler_name VARCHAR(255) NOT NULL,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_processed_events_event_id UNIQUE (event_id)
        );
    """)
    op.execute("CREATE INDEX ix_processed_events_expires_at ON processed_events (expires_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS processed_events;")
    op.execute("DROP TABLE IF EXISTS event_outbox;")
    op.execute("DROP TABLE IF EXISTS dispute_transitions;")
    op.execute("DROP TABLE IF EXISTS disputes;")

    op.execute("DROP TYPE IF EXISTS eventstatus;")
    op.execute("DROP TYPE IF EXISTS resolutionoutcome;")
    op.execute("DROP TYPE IF EXISTS offerstatus;")
    op.execute("DROP TYPE IF EXISTS disputestatus;")
    op.execute("DROP TYPE IF EXISTS disputestage;")
    op.execute("DROP TYPE IF EXISTS disputecategory;")

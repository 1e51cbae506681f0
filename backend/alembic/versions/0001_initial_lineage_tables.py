"""Initial schema — master data and tray-lineage tables.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Master data (read-only to the lineage core) ──────────

    op.create_table(
        "parts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("number", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_parts_number", "parts", ["number"], unique=True)

    op.create_table(
        "stations",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sequence_position", sa.Integer(), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), server_default=sa.true()),
        sa.Column("is_terminal", sa.Boolean(), server_default=sa.false()),
    )

    op.create_table(
        "machines",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("assigned_station_id", sa.String(20), sa.ForeignKey("stations.id")),
        sa.Column("active", sa.Boolean(), server_default=sa.true()),
    )
    op.create_index("ix_machines_assigned_station_id", "machines", ["assigned_station_id"])

    # ── Tray documents ───────────────────────────────────────

    op.create_table(
        "tray_documents",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("current_lot_number", sa.String(150)),
        sa.Column("current_part_id", sa.String(36), sa.ForeignKey("parts.id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="NOT_STARTED"),
        sa.Column("origin_machine_id", sa.String(20), sa.ForeignKey("machines.id")),
        sa.Column("origin_station_id", sa.String(20), sa.ForeignKey("stations.id")),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_tray_documents_status", "tray_documents", ["status"])
    op.create_index("ix_tray_documents_created_at", "tray_documents", ["created_at"])

    # ── Scan records ─────────────────────────────────────────

    op.create_table(
        "scan_records",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("tray_document_id", sa.String(20), sa.ForeignKey("tray_documents.id"), nullable=False),
        sa.Column("station_id", sa.String(20), sa.ForeignKey("stations.id")),
        sa.Column("machine_id", sa.String(20), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("operator_id", sa.String(36), nullable=False),
        sa.Column("lot_number_at_start", sa.String(150)),
        sa.Column("total_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scrap_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("good_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transfer_reason_code", sa.Integer()),
        sa.Column("started_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime()),
        sa.Column("finished_by", sa.String(36)),
    )
    op.create_index("ix_scan_records_tray_document_id", "scan_records", ["tray_document_id"])
    op.create_index("ix_scan_records_finished_at", "scan_records", ["finished_at"])
    # At most one open scan per tray document
    op.create_index(
        "uq_scan_records_open_per_tray",
        "scan_records",
        ["tray_document_id"],
        unique=True,
        postgresql_where=sa.text("finished_at IS NULL"),
    )

    # ── Lot ledger ───────────────────────────────────────────

    op.create_table(
        "lot_ledger",
        sa.Column("run_sequence_no", sa.String(40), primary_key=True),
        sa.Column("lot_number", sa.String(150), nullable=False, unique=True),
        sa.Column("tray_document_id", sa.String(20), sa.ForeignKey("tray_documents.id"), nullable=False),
        sa.Column("part_id", sa.String(36), sa.ForeignKey("parts.id"), nullable=False),
        sa.Column("scan_record_id", sa.String(20), sa.ForeignKey("scan_records.id")),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_lot_ledger_tray_lot", "lot_ledger", ["tray_document_id", "lot_number"])

    # ── Transfer records ─────────────────────────────────────

    op.create_table(
        "transfer_records",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("from_lot_number", sa.String(150), nullable=False),
        sa.Column("to_lot_number", sa.String(150), nullable=False),
        sa.Column("transfer_reason_code", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("scan_record_id", sa.String(20), sa.ForeignKey("scan_records.id"), nullable=False),
        sa.Column("tray_document_id", sa.String(20), sa.ForeignKey("tray_documents.id"), nullable=False),
        sa.Column("machine_id", sa.String(20), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("station_id", sa.String(20), sa.ForeignKey("stations.id")),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_transfer_records_from_lot_number", "transfer_records", ["from_lot_number"])
    op.create_index("ix_transfer_records_to_lot_number", "transfer_records", ["to_lot_number"])
    op.create_index("ix_transfer_records_scan_record_id", "transfer_records", ["scan_record_id"])
    op.create_index("ix_transfer_records_tray_document_id", "transfer_records", ["tray_document_id"])


def downgrade() -> None:
    op.drop_table("transfer_records")
    op.drop_table("lot_ledger")
    op.drop_index("uq_scan_records_open_per_tray", table_name="scan_records")
    op.drop_table("scan_records")
    op.drop_table("tray_documents")
    op.drop_table("machines")
    op.drop_table("stations")
    op.drop_table("parts")

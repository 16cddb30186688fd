"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

All 6 tables as defined in aerotrain/models/database_models.py:
documents, document_versions, graph_nodes, graph_edges,
regulatory_requirements, syllabi.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── document_versions ─────────────────────────────────────────────────
    op.create_table(
        "document_versions",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("version_number", sa.Integer, nullable=False, default=1),
        sa.Column("content_text", sa.Text, nullable=True),
        sa.Column("headings_json", sa.JSON, nullable=True),
        sa.Column("tables_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── graph_nodes ───────────────────────────────────────────────────────
    op.create_table(
        "graph_nodes",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("node_key", sa.String(512), nullable=False, index=True),
        sa.Column("node_type", sa.String(32), nullable=False, index=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("importance", sa.Float, nullable=False, default=0.5),
        sa.Column("confidence", sa.Float, nullable=False, default=0.5),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── graph_edges ───────────────────────────────────────────────────────
    op.create_table(
        "graph_edges",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("source_id", sa.Integer, sa.ForeignKey("graph_nodes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("target_id", sa.Integer, sa.ForeignKey("graph_nodes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("relationship_type", sa.String(32), nullable=False),
        sa.Column("weight", sa.Float, nullable=False, default=0.5),
        sa.Column("confidence", sa.Float, nullable=False, default=0.5),
        sa.Column("metadata_json", sa.JSON, nullable=True),
    )

    # ── regulatory_requirements ───────────────────────────────────────────
    op.create_table(
        "regulatory_requirements",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("code", sa.String(64), nullable=False, index=True),
        sa.Column("authority", sa.String(16), nullable=False, index=True),
        sa.Column("version", sa.String(32), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("effective_date", sa.Date, nullable=True),
        sa.Column("url", sa.String(512), nullable=True),
    )

    # ── syllabi ───────────────────────────────────────────────────────────
    op.create_table(
        "syllabi",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("generation_id", sa.String(64), nullable=True, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("program_type", sa.String(64), nullable=True),
        sa.Column("aircraft_type", sa.String(64), nullable=True),
        sa.Column("total_duration", sa.Integer, nullable=False, default=0),
        sa.Column("confidence_score", sa.Float, nullable=True),
        sa.Column("content_json", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("syllabi")
    op.drop_table("regulatory_requirements")
    op.drop_table("graph_edges")
    op.drop_table("graph_nodes")
    op.drop_table("document_versions")
    op.drop_table("documents")

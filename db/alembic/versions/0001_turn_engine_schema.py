"""documents, scenario graphs and turn records

Revision ID: 0001_turn_engine_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_turn_engine_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB, "postgresql")


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("doc_id", sa.String(length=120), nullable=False),
        sa.Column("version", sa.String(length=40), nullable=False),
        sa.Column("content_json", JSON_TYPE, nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("kind", "doc_id", "version", name="uq_documents_kind_id_version"),
    )
    op.create_index("ix_documents_kind", "documents", ["kind"])

    op.create_table(
        "scenario_graphs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("graph_id", sa.String(length=120), nullable=False, unique=True),
        sa.Column("graph_json", JSON_TYPE, nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "turn_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("game_id", sa.String(length=120), nullable=False),
        sa.Column("idempotency_key", sa.String(length=200), nullable=False),
        sa.Column("turn_number", sa.Integer, nullable=False),
        sa.Column("result_text", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("game_id", "idempotency_key", name="uq_turn_records_game_key"),
    )
    op.create_index("ix_turn_records_game_id", "turn_records", ["game_id"])


def downgrade() -> None:
    op.drop_index("ix_turn_records_game_id", table_name="turn_records")
    op.drop_table("turn_records")
    op.drop_table("scenario_graphs")
    op.drop_index("ix_documents_kind", table_name="documents")
    op.drop_table("documents")

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    processing_status_enum = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="processingstatus")
    variant_type_enum = sa.Enum("THUMBNAIL", "PREVIEW", "WEB_OPTIMIZED", "MOBILE", name="varianttype")

    op.create_table(
        "assets",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("file_key", sa.String(length=1024), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("thumbnail_key", sa.String(length=1024), nullable=True),
        sa.Column("preview_key", sa.String(length=1024), nullable=True),
        sa.Column("processing_status", processing_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_assets_processing_status_updated_at", "assets", ["processing_status", "updated_at"])

    op.create_table(
        "asset_variants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("asset_id", sa.String(length=64), sa.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_type", variant_type_enum, nullable=False),
        sa.Column("file_key", sa.String(length=1024), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("format", sa.String(length=32), nullable=False),
        sa.Column("quality", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("asset_id", "variant_type", name="uq_asset_variants_asset_type"),
    )

    op.create_table(
        "asset_metadata",
        sa.Column("asset_id", sa.String(length=64), sa.ForeignKey("assets.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("color_space", sa.String(length=64), nullable=True),
        sa.Column("dpi", sa.Integer(), nullable=True),
        sa.Column("bit_depth", sa.Integer(), nullable=True),
        sa.Column("frame_rate", sa.Float(), nullable=True),
        sa.Column("bit_rate", sa.BigInteger(), nullable=True),
        sa.Column("codec", sa.String(length=64), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("asset_metadata")
    op.drop_table("asset_variants")
    op.drop_index("ix_assets_processing_status_updated_at", table_name="assets")
    op.drop_table("assets")
    sa.Enum(name="varianttype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="processingstatus").drop(op.get_bind(), checkfirst=True)

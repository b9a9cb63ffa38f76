"""initial depot schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18
"""
import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "certificates",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("not_valid_before", sa.DateTime(timezone=True), nullable=False),
        sa.Column("not_valid_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("certificate_pem", sa.Text(), nullable=False),
    )
    op.create_index("ix_certificates_name", "certificates", ["name"])

    op.create_table(
        "ca_keys",
        sa.Column("authority_id", sa.Integer(), primary_key=True),
        sa.Column(
            "certificate_id",
            sa.BigInteger(),
            sa.ForeignKey("certificates.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("key_pem", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("authority_id = 1", name="ck_ca_keys_single_authority"),
    )

    op.create_table(
        "challenges",
        sa.Column("challenge", sa.String(length=255), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    op.drop_table("challenges")
    op.drop_table("ca_keys")
    op.drop_index("ix_certificates_name", table_name="certificates")
    op.drop_table("certificates")

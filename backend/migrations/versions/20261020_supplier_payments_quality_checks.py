"""Supplier payments and reception quality checks

Revision ID: 20261020_payments_qc
Revises: 20261019_initial
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_payments_qc"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    op.create_table(
        "supplier_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", sa.String(100), nullable=False, server_default="cash"),
        sa.Column("reference_number", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_supplier_payments_amount_positive"),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("supplier_payments", schema=None) as batch_op:
        batch_op.create_index("ix_supplier_payments_supplier_id", ["supplier_id"], unique=False)

    op.create_table(
        "quality_checks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reception_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("inspector_user_id", sa.Integer(), nullable=True),
        sa.Column("result", sa.String(16), nullable=False),
        sa.Column("quantity_checked", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity_passed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("defect_description", sa.Text(), nullable=True),
        sa.Column("action_taken", sa.String(32), nullable=False, server_default="approve"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint(
            "quantity_passed + quantity_failed <= quantity_checked",
            name="ck_quality_checks_quantities",
        ),
        sa.ForeignKeyConstraint(["reception_id"], ["receptions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("quality_checks", schema=None) as batch_op:
        batch_op.create_index("ix_quality_checks_reception_id", ["reception_id"], unique=False)
        batch_op.create_index("ix_quality_checks_product_id", ["product_id"], unique=False)


def downgrade():
    op.drop_table("quality_checks")
    op.drop_table("supplier_payments")

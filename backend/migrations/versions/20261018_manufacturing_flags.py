"""Add manufacturing role flags to product unit balances

Revision ID: 20261018_mfg_flags
Revises: 20261018_manufacturing
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_mfg_flags"
down_revision = "20261018_manufacturing"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("product_unit_quantities", schema=None) as batch_op:
        batch_op.add_column(sa.Column("is_manufactured", sa.Boolean(), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("is_raw_material", sa.Boolean(), nullable=False, server_default="0"))


def downgrade():
    with op.batch_alter_table("product_unit_quantities", schema=None) as batch_op:
        batch_op.drop_column("is_raw_material")
        batch_op.drop_column("is_manufactured")

"""pos consumption link

Revision ID: 7b1e4d9c2a61
Revises: 3c9d1e7a5b20
Create Date: 2026-10-19 16:40:12.902114
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from vipledger.models.user import GUID

# revision identifiers, used by Alembic.
revision: str = "7b1e4d9c2a61"
down_revision: Union[str, Sequence[str], None] = "3c9d1e7a5b20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Batch mode so the constraint can be added on SQLite as well.
    with op.batch_alter_table("vip_consumptions") as batch_op:
        batch_op.add_column(sa.Column("pos_order_id", GUID(), nullable=True))
        batch_op.create_foreign_key(
            "fk_vip_consumptions_pos_order_id",
            "pos_orders",
            ["pos_order_id"],
            ["id"],
            ondelete="SET NULL",
        )
        batch_op.create_unique_constraint("uq_vip_consumptions_pos_order_id", ["pos_order_id"])


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table("vip_consumptions") as batch_op:
        batch_op.drop_constraint("uq_vip_consumptions_pos_order_id", type_="unique")
        batch_op.drop_constraint("fk_vip_consumptions_pos_order_id", type_="foreignkey")
        batch_op.drop_column("pos_order_id")

"""Add min-cut partition and link plasticity columns

Revision ID: 0002_graph_plasticity
Revises: 0001_learning_core
Create Date: 2026-10-15
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0002_graph_plasticity"
down_revision: Union[str, None] = "0001_learning_core"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("reasoning_patterns", sa.Column("mincut_partition", sa.Integer(), nullable=True))
    op.add_column(
        "reasoning_patterns",
        sa.Column("coherence_score", sa.Float(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_reasoning_patterns_domain_partition",
        "reasoning_patterns",
        ["domain", "mincut_partition"],
    )

    op.add_column(
        "pattern_links",
        sa.Column("plasticity_weight", sa.Float(), nullable=False, server_default="1.0"),
    )
    op.add_column(
        "pattern_links",
        sa.Column("spike_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column("pattern_links", sa.Column("last_activation", sa.DateTime(timezone=True), nullable=True))
    op.create_check_constraint(
        "ck_pattern_links_plasticity",
        "pattern_links",
        "plasticity_weight > 0",
    )


def downgrade() -> None:
    op.drop_constraint("ck_pattern_links_plasticity", "pattern_links", type_="check")
    op.drop_column("pattern_links", "last_activation")
    op.drop_column("pattern_links", "spike_count")
    op.drop_column("pattern_links", "plasticity_weight")

    op.drop_index("ix_reasoning_patterns_domain_partition", table_name="reasoning_patterns")
    op.drop_column("reasoning_patterns", "coherence_score")
    op.drop_column("reasoning_patterns", "mincut_partition")

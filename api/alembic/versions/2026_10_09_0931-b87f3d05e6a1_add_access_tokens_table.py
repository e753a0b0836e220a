"""Add access_tokens table

Revision ID: b87f3d05e6a1
Revises: 4c1e9a2b7d3f
Create Date: 2026-10-09 09:31:04.772919

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b87f3d05e6a1'
down_revision: Union[str, Sequence[str], None] = '4c1e9a2b7d3f'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'access_tokens',
        sa.Column('token_hash', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_access_tokens_user_id', 'access_tokens', ['user_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_access_tokens_user_id', if_exists=True)
    op.drop_table('access_tokens', if_exists=True)

"""Add reading_progress table

Revision ID: 4c1e9a2b7d3f
Revises: 
Create Date: 2026-10-05 14:12:31.418207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e9a2b7d3f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'reading_progress',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('book_id', sa.String(), nullable=False),

        sa.Column('cfi', sa.String(), nullable=False),
        sa.Column('percentage', sa.Float, nullable=False, server_default='0'),
        sa.Column('page_number', sa.Integer, nullable=True),
        sa.Column('chapter_id', sa.String(), nullable=True),

        sa.Column('updated_at', sa.BigInteger, nullable=False),
        sa.Column('server_synced_at', sa.BigInteger, nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('sync_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('last_opened_at', sa.BigInteger, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.UniqueConstraint('user_id', 'book_id', name='uq_reading_progress_user_book'),
    )
    op.create_index('ik_reading_progress_user_updated', 'reading_progress',
                    ['user_id', sa.text('updated_at DESC')])
    op.create_index('ik_reading_progress_user_synced', 'reading_progress',
                    ['user_id', sa.text('server_synced_at DESC')])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ik_reading_progress_user_synced', if_exists=True)
    op.drop_index('ik_reading_progress_user_updated', if_exists=True)
    op.drop_table('reading_progress', if_exists=True)

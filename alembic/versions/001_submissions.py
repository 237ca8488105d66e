"""submissions backup table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'submissions',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_on', sa.Date(), nullable=False),
        sa.Column('form_type', sa.String(50), nullable=False, server_default='contact'),
        sa.Column('form_data', sa.JSON(), nullable=False),
        sa.Column('webhook_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('webhook_payload', sa.JSON(), nullable=True),
    )
    op.create_index('ix_submissions_created_on', 'submissions', ['created_on'])
    op.create_index('ix_submissions_webhook_status', 'submissions', ['webhook_status'])


def downgrade() -> None:
    op.drop_index('ix_submissions_webhook_status', table_name='submissions')
    op.drop_index('ix_submissions_created_on', table_name='submissions')
    op.drop_table('submissions')

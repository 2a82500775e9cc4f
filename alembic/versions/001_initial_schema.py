"""initial schema - file deliveries and outbox

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

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
    # Create file_deliveries table (document_type and delivery_status as VARCHAR)
    op.create_table(
        'file_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('file_id', sa.String(255), nullable=False),
        sa.Column('filename', sa.String(255), nullable=False, index=True),
        sa.Column('ruc', sa.String(11), nullable=False, index=True),
        sa.Column('document_id', sa.String(50), nullable=False),
        sa.Column('document_type', sa.String(20), nullable=False),
        sa.Column('delivery_status', sa.String(25), nullable=False, server_default='SCHEDULED_TO_DELIVER', index=True),
        sa.Column('server_url', sa.String(255), nullable=False),
        sa.Column('custom_id', sa.String(255), nullable=True, index=True),
        sa.Column('attempt_count', sa.Integer(), server_default='0'),
        sa.Column('sunat_ticket', sa.String(50), nullable=True),
        sa.Column('sunat_status_code', sa.String(50), nullable=True),
        sa.Column('cdr_file_id', sa.String(255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    # Create outbox_messages table
    op.create_table(
        'outbox_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('file_delivery_id', sa.String(36), sa.ForeignKey('file_deliveries.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('queue_name', sa.String(255), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('delay_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )


def downgrade() -> None:
    op.drop_table('outbox_messages')
    op.drop_table('file_deliveries')

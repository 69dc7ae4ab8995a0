"""Initial schema: transcription records and meetings

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'transcription_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('subject_id', sa.String(length=128), nullable=True),
        sa.Column('size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('recorded_at', sa.String(length=40), nullable=True),
        sa.Column('subject_metadata', sa.JSON(), nullable=True),
        sa.Column('analysis', sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_transcription_records_name', 'transcription_records', ['name'], unique=True)
    op.create_index('ix_transcription_records_subject_id', 'transcription_records', ['subject_id'])

    op.create_table(
        'meetings',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('subject_id', sa.String(length=128), nullable=True),
        sa.Column('request_id', sa.String(length=128), nullable=True),
        sa.Column('student_name', sa.String(length=255), nullable=True),
        sa.Column('student_email', sa.String(length=255), nullable=True),
        sa.Column('student_id', sa.String(length=64), nullable=True),
        sa.Column('course', sa.String(length=255), nullable=True),
        sa.Column('scheduled_date', sa.String(length=10), nullable=True),
        sa.Column('transcription_file_name', sa.String(length=255), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_meetings_subject_id', 'meetings', ['subject_id'])


def downgrade() -> None:
    op.drop_index('ix_meetings_subject_id', table_name='meetings')
    op.drop_table('meetings')
    op.drop_index('ix_transcription_records_subject_id', table_name='transcription_records')
    op.drop_index('ix_transcription_records_name', table_name='transcription_records')
    op.drop_table('transcription_records')

"""create_assessment_tables

Revision ID: 3f1c9a7b2e40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7b2e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('questions',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('content_json', sa.Text(), nullable=True),
        sa.Column('marks', sa.Float(), nullable=False),
        sa.Column('subject_id', sa.String(64), nullable=True),
        sa.Column('subject_name', sa.String(200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_questions_id', 'questions', ['id'])
    op.create_index('ix_questions_subject_id', 'questions', ['subject_id'])

    op.create_table('online_tests',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('mode', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('available_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Float(), nullable=False),
        sa.Column('sections_json', sa.Text(), nullable=True),
        sa.Column('options_json', sa.Text(), nullable=True),
        sa.Column('results_published', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.String(200), nullable=False),
        sa.Column('updated_by', sa.String(200), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_online_tests_id', 'online_tests', ['id'])
    op.create_index('ix_online_tests_status', 'online_tests', ['status'])

    op.create_table('attempts',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('test_id', sa.String(64), nullable=False),
        sa.Column('student_id', sa.String(64), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_saved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_section_index', sa.Integer(), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=False),
        sa.Column('user_agent', sa.String(500), nullable=False),
        sa.Column('question_order_json', sa.Text(), nullable=True),
        sa.Column('option_orders_json', sa.Text(), nullable=True),
        sa.Column('question_marks_json', sa.Text(), nullable=True),
        sa.Column('result_json', sa.Text(), nullable=True),
        sa.Column('graded_by', sa.String(200), nullable=True),
        sa.Column('graded_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_id'], ['online_tests.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('test_id', 'student_id', 'attempt_number', name='uq_attempt_number')
    )
    op.create_index('ix_attempts_id', 'attempts', ['id'])
    op.create_index('ix_attempts_test_id', 'attempts', ['test_id'])
    op.create_index('ix_attempts_student_id', 'attempts', ['student_id'])
    op.create_index('ix_attempts_status', 'attempts', ['status'])

    op.create_table('attempt_sections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.String(64), nullable=False),
        sa.Column('section_index', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent', sa.Integer(), nullable=False),
        sa.Column('is_locked', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('attempt_id', 'section_index', name='uq_attempt_section')
    )
    op.create_index('ix_attempt_sections_id', 'attempt_sections', ['id'])
    op.create_index('ix_attempt_sections_attempt_id', 'attempt_sections', ['attempt_id'])

    op.create_table('attempt_answers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.String(64), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=False),
        sa.Column('section_index', sa.Integer(), nullable=False),
        sa.Column('answer_json', sa.Text(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('marks_awarded', sa.Float(), nullable=True),
        sa.Column('max_marks', sa.Float(), nullable=False),
        sa.Column('time_spent', sa.Integer(), nullable=False),
        sa.Column('flagged', sa.Boolean(), nullable=False),
        sa.Column('answered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_attempt_question')
    )
    op.create_index('ix_attempt_answers_id', 'attempt_answers', ['id'])
    op.create_index('ix_attempt_answers_attempt_id', 'attempt_answers', ['attempt_id'])
    op.create_index('ix_attempt_answers_question_id', 'attempt_answers', ['question_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('attempt_answers')
    op.drop_table('attempt_sections')
    op.drop_table('attempts')
    op.drop_table('online_tests')
    op.drop_table('questions')

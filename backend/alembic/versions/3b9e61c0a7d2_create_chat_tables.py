"""create characters, conversations and messages tables

Revision ID: 3b9e61c0a7d2
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3b9e61c0a7d2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Check if tables already exist (databases bootstrapped by create_all)
    from sqlalchemy import inspect
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    if 'characters' not in tables:
        op.create_table('characters',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=50), nullable=False),
            sa.Column('system_prompt', sa.Text(), nullable=False),
            sa.Column('usage_count', sa.Integer(), server_default='0', nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_characters_user_id'), 'characters', ['user_id'], unique=False)

    if 'conversations' not in tables:
        op.create_table('conversations',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('character_id', sa.String(length=36), nullable=False),
            sa.Column('title', sa.String(length=100), nullable=False),
            sa.Column('message_count', sa.Integer(), server_default='0', nullable=False),
            sa.Column('last_message_at', sa.DateTime(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['character_id'], ['characters.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_conversations_user_id'), 'conversations', ['user_id'], unique=False)
        op.create_index(op.f('ix_conversations_character_id'), 'conversations', ['character_id'], unique=False)
        op.create_index('ix_conversations_user_last_message', 'conversations', ['user_id', 'last_message_at'], unique=False)

    if 'messages' not in tables:
        op.create_table('messages',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('conversation_id', sa.String(length=36), nullable=False),
            sa.Column('role', sa.String(length=20), nullable=False, comment='user, assistant or system'),
            sa.Column('content', sa.Text(), nullable=False),
            sa.Column('tokens', sa.Integer(), nullable=True),
            sa.Column('model', sa.String(length=100), nullable=True),
            sa.Column('timestamp', sa.DateTime(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_messages_expires_at'), 'messages', ['expires_at'], unique=False)
        op.create_index('ix_messages_conversation_timestamp', 'messages', ['conversation_id', 'timestamp', 'id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_messages_conversation_timestamp', table_name='messages')
    op.drop_index(op.f('ix_messages_expires_at'), table_name='messages')
    op.drop_table('messages')

    op.drop_index('ix_conversations_user_last_message', table_name='conversations')
    op.drop_index(op.f('ix_conversations_character_id'), table_name='conversations')
    op.drop_index(op.f('ix_conversations_user_id'), table_name='conversations')
    op.drop_table('conversations')

    op.drop_index(op.f('ix_characters_user_id'), table_name='characters')
    op.drop_table('characters')

"""Initial schema with knowledge base full-text search

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from workshop_chat.core.database import search_vector_ddl, prefixed

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    projects = prefixed('projects')
    conversations = prefixed('chat_conversations')
    messages = prefixed('chat_messages')

    # Shared tables may already exist from another tenant's migration
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.Text, nullable=False),
        sa.Column('display_name', sa.Text, nullable=True),
        sa.Column('avatar_url', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        if_not_exists=True,
    )

    # Create projects table
    op.create_table(
        projects,
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('slug', sa.Text, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('is_public', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('slug', name=f'{projects}_slug_unique'),
    )

    # Create chat_conversations table
    op.create_table(
        conversations,
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Create chat_messages table
    op.create_table(
        messages,
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('conversation_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('sources', postgresql.JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['conversation_id'], [f'{conversations}.id'], ondelete='CASCADE'),
    )
    op.create_index(f'ix_{messages}_conversation_id', messages, ['conversation_id'])

    # Shared knowledge base (crowdsourced RAG)
    op.create_table(
        'knowledge_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('tags', postgresql.ARRAY(sa.Text), nullable=False, server_default='{}'),
        sa.Column('contributor', sa.String(100), nullable=False),
        sa.Column('search_vector', postgresql.TSVECTOR, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        if_not_exists=True,
    )
    op.create_index('ix_knowledge_entries_created_at', 'knowledge_entries', ['created_at'],
                    if_not_exists=True)
    op.create_index('idx_knowledge_search', 'knowledge_entries', ['search_vector'],
                    postgresql_using='gin', if_not_exists=True)

    # Keep search_vector current: title weighted A, content weighted B
    for statement in search_vector_ddl():
        op.execute(statement)


def downgrade() -> None:
    # users and knowledge_entries are shared with other tenants and stay
    op.drop_table(prefixed('chat_messages'))
    op.drop_table(prefixed('chat_conversations'))
    op.drop_table(prefixed('projects'))

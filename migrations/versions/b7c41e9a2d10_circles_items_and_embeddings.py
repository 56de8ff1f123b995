"""circles, items and item embeddings

Revision ID: b7c41e9a2d10
Revises:
Create Date: 2026-10-19 09:12:44.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector


# revision identifiers, used by Alembic.
revision: str = 'b7c41e9a2d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIM = 1024


def upgrade():
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True, unique=True),
        sa.Column('image', sa.String(), nullable=True),
    )

    op.create_table(
        'circles',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'circle_members',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('circle_id', sa.String(), sa.ForeignKey('circles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('left_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('user_id', 'circle_id', name='uq_circle_member'),
    )
    op.create_index('ix_circle_members_user_id', 'circle_members', ['user_id'])

    op.create_table(
        'items',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('image_path', sa.String(), nullable=False),
        sa.Column('categories', postgresql.ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('tags', postgresql.ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('embedding', Vector(EMBEDDING_DIM), nullable=True),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_items_owner_id', 'items', ['owner_id'])

    # The ANN index pgvector maintains over the embedding column; NULLs are skipped
    op.create_index(
        'ix_items_embedding_hnsw',
        'items',
        ['embedding'],
        postgresql_using='hnsw',
        postgresql_ops={'embedding': 'vector_cosine_ops'},
    )

    op.create_table(
        'item_circles',
        sa.Column('item_id', sa.String(), sa.ForeignKey('items.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('circle_id', sa.String(), sa.ForeignKey('circles.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_index('ix_item_circles_circle_id', 'item_circles', ['circle_id'])


def downgrade():
    op.drop_index('ix_item_circles_circle_id', table_name='item_circles')
    op.drop_table('item_circles')
    op.drop_index('ix_items_embedding_hnsw', table_name='items')
    op.drop_index('ix_items_owner_id', table_name='items')
    op.drop_table('items')
    op.drop_index('ix_circle_members_user_id', table_name='circle_members')
    op.drop_table('circle_members')
    op.drop_table('circles')
    op.drop_table('users')

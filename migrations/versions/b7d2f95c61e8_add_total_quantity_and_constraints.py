"""Add posts.total_quantity, quantity checks and one reservation per user/post

Revision ID: b7d2f95c61e8
Revises: a1c4e7f20b3d
Create Date: 2026-10-02

"""
from alembic import op
import sqlalchemy as sa


revision = 'b7d2f95c61e8'
down_revision = 'a1c4e7f20b3d'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('posts', schema=None) as batch_op:
        batch_op.add_column(sa.Column('total_quantity', sa.Integer(), nullable=True))

    # Backfill from the legacy column and repair rows that drifted out of range
    op.execute("UPDATE posts SET total_quantity = quantity WHERE total_quantity IS NULL")
    op.execute("UPDATE posts SET quantity_left = 0 WHERE quantity_left < 0")
    op.execute("UPDATE posts SET quantity_left = total_quantity WHERE quantity_left > total_quantity")

    # Keep the earliest reservation where a user holds duplicates
    op.execute(
        "DELETE FROM reservations WHERE id NOT IN ("
        "SELECT MIN(id) FROM reservations GROUP BY user_id, post_id)"
    )

    with op.batch_alter_table('posts', schema=None) as batch_op:
        batch_op.create_check_constraint('ck_posts_quantity_left_non_negative', 'quantity_left >= 0')
        batch_op.create_check_constraint(
            'ck_posts_quantity_left_within_total',
            'total_quantity IS NULL OR quantity_left <= total_quantity'
        )
        batch_op.create_check_constraint(
            'ck_posts_total_quantity_positive',
            'total_quantity IS NULL OR total_quantity >= 1'
        )

    with op.batch_alter_table('reservations', schema=None) as batch_op:
        batch_op.create_unique_constraint('uq_reservations_user_post', ['user_id', 'post_id'])


def downgrade():
    with op.batch_alter_table('reservations', schema=None) as batch_op:
        batch_op.drop_constraint('uq_reservations_user_post', type_='unique')

    with op.batch_alter_table('posts', schema=None) as batch_op:
        batch_op.drop_constraint('ck_posts_total_quantity_positive', type_='check')
        batch_op.drop_constraint('ck_posts_quantity_left_within_total', type_='check')
        batch_op.drop_constraint('ck_posts_quantity_left_non_negative', type_='check')
        batch_op.drop_column('total_quantity')

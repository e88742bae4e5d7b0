from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone

from constants import RESERVATION_STATUS_RESERVED

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp (all DateTime columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)

    # ADMIN: admins may edit/delete any post
    is_admin = db.Column(db.Boolean, default=False)

    date_joined = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'is_admin': bool(self.is_admin),
            'date_joined': _iso(self.date_joined),
        }


class UserInfo(db.Model):
    """Public profile projection. id is the user id."""
    __tablename__ = 'userinfo'

    id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    nickname = db.Column(db.String(50), nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'nickname': self.nickname,
            'avatar_url': self.avatar_url,
        }


class Post(db.Model):
    __tablename__ = 'posts'
    __table_args__ = (
        db.CheckConstraint('quantity_left >= 0', name='ck_posts_quantity_left_non_negative'),
        db.CheckConstraint(
            'total_quantity IS NULL OR quantity_left <= total_quantity',
            name='ck_posts_quantity_left_within_total',
        ),
        db.CheckConstraint(
            'total_quantity IS NULL OR total_quantity >= 1',
            name='ck_posts_total_quantity_positive',
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(200), nullable=True)
    campus_location = db.Column(db.String(20), nullable=False)  # 'South Campus', 'North Campus', ...
    description = db.Column(db.Text, nullable=True)

    # PICKUP WINDOW: start_time NULL means "available now"
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=False)

    # QUANTITY: total_quantity is the original supply, quantity is its legacy mirror
    total_quantity = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    quantity_left = db.Column(db.Integer, nullable=False, default=1)

    image_path = db.Column(db.String(200), nullable=True)  # Key in the food_pictures bucket

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def original_quantity(self):
        """Original supply, falling back to the legacy quantity column."""
        return self.total_quantity or self.quantity or 1

    @property
    def is_active(self):
        """True while the pickup window is still open."""
        return self.end_time > utcnow()

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'location': self.location,
            'campus_location': self.campus_location,
            'description': self.description,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'quantity': self.quantity,
            'total_quantity': self.original_quantity,
            'quantity_left': self.quantity_left,
            'image_path': self.image_path,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def snapshot(self):
        """Subset of fields shown alongside a reservation."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'quantity_left': self.quantity_left,
            'total_quantity': self.original_quantity,
            'created_at': _iso(self.created_at),
            'image_path': self.image_path,
            'location': self.location,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
        }


class Reservation(db.Model):
    __tablename__ = 'reservations'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'post_id', name='uq_reservations_user_post'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=RESERVATION_STATUS_RESERVED)
    created_at = db.Column(db.DateTime, default=utcnow)

    post = db.relationship('Post', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'post_id': self.post_id,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }

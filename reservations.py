"""
Reservation ledger.

Every live reservation holds exactly one unit of its post's quantity_left.
The reservation row and the quantity change are written in one transaction,
and quantity_left only moves through conditional UPDATEs, so concurrent
reservers can never push it below zero.
"""
import logging

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from constants import RESERVATION_STATUS_RESERVED
from errors import (
    ValidationError, NotFoundError, DuplicateError, ExhaustedError, StorageError
)
from models import db, Post, Reservation
from signals import reservation_created, reservation_cancelled
from validation import parse_id

logger = logging.getLogger(__name__)


def create_reservation(user_id, post_id):
    valid, post_id = parse_id(post_id)
    if not valid:
        raise ValidationError("post_id is required")

    existing = Reservation.query.filter_by(user_id=user_id, post_id=post_id).first()
    if existing:
        raise DuplicateError("You have already reserved this post")

    post = db.session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    if post.user_id == user_id:
        raise ValidationError("You cannot reserve your own post")
    if not post.is_active:
        raise ValidationError("This post has ended")
    if post.quantity_left <= 0:
        raise ExhaustedError("This post is no longer available")

    reservation = Reservation(user_id=user_id, post_id=post_id, status=RESERVATION_STATUS_RESERVED)
    try:
        db.session.add(reservation)
        db.session.flush()
        claimed = Post.query.filter(Post.id == post_id, Post.quantity_left > 0).update(
            {Post.quantity_left: Post.quantity_left - 1},
            synchronize_session=False,
        )
        if not claimed:
            # Someone else took the last unit since we checked
            db.session.rollback()
            logger.info(f"Reservation by user {user_id} lost race for post {post_id}")
            raise ExhaustedError("This post is no longer available")
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.info(f"Concurrent duplicate reservation by user {user_id} for post {post_id}: {e}")
        raise DuplicateError("You have already reserved this post") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create reservation for user {user_id} on post {post_id}: {e}", exc_info=True)
        raise StorageError("Failed to create reservation") from e

    logger.info(f"User {user_id} reserved post {post_id} (reservation {reservation.id})")
    reservation_created.send(current_app._get_current_object(), reservation=reservation)
    return reservation


def list_reservations(user_id):
    """All of a user's reservations with their posts, most recent first."""
    return (
        Reservation.query
        .filter(Reservation.user_id == user_id)
        .options(joinedload(Reservation.post))
        .order_by(Reservation.created_at.desc(), Reservation.id.desc())
        .all()
    )


def cancel_reservation(user_id, reservation_id):
    # Both predicates in one lookup: another user's id is simply "not found"
    reservation = Reservation.query.filter_by(id=reservation_id, user_id=user_id).first()
    if reservation is None:
        raise NotFoundError("Reservation not found")

    post_id = reservation.post_id
    try:
        db.session.delete(reservation)
        db.session.flush()
        restored = Post.query.filter(
            Post.id == post_id,
            Post.quantity_left < func.coalesce(Post.total_quantity, Post.quantity),
        ).update(
            {Post.quantity_left: Post.quantity_left + 1},
            synchronize_session=False,
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete reservation {reservation_id}: {e}", exc_info=True)
        raise StorageError("Failed to delete reservation") from e

    if not restored:
        logger.info(f"Reservation {reservation_id} cancelled; post {post_id} missing or already full")
    else:
        logger.info(f"User {user_id} cancelled reservation {reservation_id} on post {post_id}")
    reservation_cancelled.send(
        current_app._get_current_object(), reservation_id=reservation_id, post_id=post_id
    )

"""
Account data: profile read/update and full account purge.
"""
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from constants import AVATAR_BUCKET, FOOD_IMAGES_BUCKET, MAX_NICKNAME_LENGTH
from errors import ValidationError, StorageError
from models import db, User, UserInfo, Post, Reservation
from storage import get_storage
from validation import validate_image_upload, image_extension, has_upload, validate_text

logger = logging.getLogger(__name__)


def resolve_avatar_path(avatar_url, user_id):
    """
    Storage key for an avatar URL, or None if it does not point at our bucket.

    Accepts a full public URL (anything up to "profile-images/" is dropped,
    as is a query string) or an already-bare "<user_id>/..." key.
    """
    if not avatar_url:
        return None
    marker = f"{AVATAR_BUCKET}/"
    if marker in avatar_url:
        return avatar_url.split(marker, 1)[1].split('?')[0] or None
    if avatar_url.startswith(f"{user_id}/"):
        return avatar_url.split('?')[0]
    return None


def get_profile(user_id):
    profile = db.session.get(UserInfo, user_id)
    if profile is None:
        return UserInfo(id=user_id)
    return profile


def update_profile(user_id, nickname=None, avatar=None):
    valid, nickname = validate_text(nickname, 'nickname')
    if not valid:
        raise ValidationError(nickname)
    if nickname is not None and len(nickname) > MAX_NICKNAME_LENGTH:
        raise ValidationError(f"Nickname must be under {MAX_NICKNAME_LENGTH} characters")

    profile = db.session.get(UserInfo, user_id)
    if profile is None:
        profile = UserInfo(id=user_id)
        db.session.add(profile)

    if nickname is not None:
        profile.nickname = nickname or None

    storage = get_storage(AVATAR_BUCKET)
    stale_avatar = None
    if has_upload(avatar):
        valid, error = validate_image_upload(avatar)
        if not valid:
            raise ValidationError(f"File upload error: {error}")
        # Fixed slot per user; a newer upload simply overwrites it
        key = f"{user_id}/avatar.{image_extension(avatar.filename)}"
        storage.upload(avatar.read(), key, content_type=avatar.mimetype, upsert=True)
        previous = resolve_avatar_path(profile.avatar_url, user_id)
        if previous and previous != key:
            stale_avatar = previous
        profile.avatar_url = storage.get_public_url(key)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to update profile for user {user_id}: {e}", exc_info=True)
        raise StorageError("Failed to update profile") from e

    if stale_avatar:
        storage.remove([stale_avatar])
    logger.info(f"User {user_id} updated profile")
    return profile


def purge_account(user_id):
    """
    Delete everything a user owns. Returns False if some blobs could not be removed.

    Order keeps reservations from outliving the posts or user they point at.
    Row deletions commit together; blobs are removed best-effort afterwards.
    """
    try:
        # Give back the units this user was holding on other people's posts
        reserved_post_ids = db.session.query(Reservation.post_id).filter(Reservation.user_id == user_id)
        Post.query.filter(
            Post.id.in_(reserved_post_ids.scalar_subquery()),
            Post.user_id != user_id,
            Post.quantity_left < func.coalesce(Post.total_quantity, Post.quantity),
        ).update({Post.quantity_left: Post.quantity_left + 1}, synchronize_session=False)

        own_reservations = Reservation.query.filter(
            Reservation.user_id == user_id
        ).delete(synchronize_session=False)

        posts = db.session.query(Post.id, Post.image_path).filter(Post.user_id == user_id).all()
        post_ids = [p.id for p in posts]
        if post_ids:
            Reservation.query.filter(
                Reservation.post_id.in_(post_ids)
            ).delete(synchronize_session=False)

            Post.query.filter(Post.user_id == user_id).delete(synchronize_session=False)

        profile = db.session.get(UserInfo, user_id)
        avatar_path = resolve_avatar_path(profile.avatar_url, user_id) if profile else None

        UserInfo.query.filter(UserInfo.id == user_id).delete(synchronize_session=False)
        User.query.filter(User.id == user_id).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error deleting account {user_id}: {e}", exc_info=True)
        raise StorageError("Failed to delete account") from e

    blobs_removed = True
    image_paths = [p.image_path for p in posts if p.image_path]
    if image_paths and not get_storage(FOOD_IMAGES_BUCKET).remove(image_paths):
        logger.warning(f"Purge of user {user_id}: some post images were not removed")
        blobs_removed = False
    if avatar_path and not get_storage(AVATAR_BUCKET).remove([avatar_path]):
        logger.warning(f"Purge of user {user_id}: avatar {avatar_path} was not removed")
        blobs_removed = False

    logger.info(f"Account {user_id} purged: {len(post_ids)} posts, "
                f"{own_reservations} own reservations")
    return blobs_removed

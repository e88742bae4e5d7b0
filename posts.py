"""
Post lifecycle: create, edit and delete food posts.

Quantity bookkeeping happens in single UPDATE statements so a concurrent
reservation can never be lost between a read and a write. Image cleanup is
best-effort: a failed blob removal is logged and the post change still goes
through.
"""
import uuid
import logging

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from constants import (
    FOOD_IMAGES_BUCKET, MAX_TITLE_LENGTH, MAX_LOCATION_LENGTH, MAX_DESCRIPTION_LENGTH
)
from errors import ValidationError, AuthorizationError, NotFoundError, StorageError
from models import db, Post, Reservation, utcnow
from signals import post_created, post_updated, post_deleted
from storage import get_storage
from validation import (
    validate_quantity, validate_campus_location, parse_timestamp,
    validate_image_upload, image_extension, has_upload, validate_text
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('title', 'location', 'campus_location', 'description', 'end_time')


def _text(fields, name):
    valid, result = validate_text(fields.get(name), name.replace('_', ' '))
    if not valid:
        raise ValidationError(result)
    return result


def clean_post_fields(fields, quantity_required):
    """
    Validate submitted post fields and return column values.
    quantity is None when it was optional and not supplied.
    """
    values = {name: _text(fields, name) for name in REQUIRED_FIELDS}
    if any(not values[name] for name in REQUIRED_FIELDS):
        raise ValidationError("Missing required fields")

    for name, limit in (('title', MAX_TITLE_LENGTH), ('location', MAX_LOCATION_LENGTH),
                        ('description', MAX_DESCRIPTION_LENGTH)):
        if len(values[name]) > limit:
            raise ValidationError(f"{name.capitalize()} must be under {limit} characters")

    valid, result = validate_campus_location(values['campus_location'])
    if not valid:
        raise ValidationError(result)

    valid, result = parse_timestamp(values['end_time'])
    if not valid:
        raise ValidationError(f"Invalid end time: {result}")
    values['end_time'] = result

    start_time = _text(fields, 'start_time')
    values['start_time'] = None
    if start_time:
        valid, result = parse_timestamp(start_time)
        if not valid:
            raise ValidationError(f"Invalid start time: {result}")
        if result > values['end_time']:
            raise ValidationError("Start time must be before end time")
        values['start_time'] = result

    quantity = fields.get('quantity')
    if isinstance(quantity, str):
        quantity = quantity.strip()
    values['quantity'] = None
    if quantity not in (None, ''):
        valid, result = validate_quantity(quantity)
        if not valid:
            raise ValidationError(result)
        values['quantity'] = result
    elif quantity_required:
        raise ValidationError("Missing required fields")

    return values


def upload_post_image(storage, image):
    """Validate and store an image under a fresh unique key. Returns the key."""
    valid, error = validate_image_upload(image)
    if not valid:
        raise ValidationError(f"File upload error: {error}")
    key = f"{uuid.uuid4()}.{image_extension(image.filename)}"
    storage.upload(image.read(), key, content_type=image.mimetype, upsert=False)
    logger.info(f"Uploaded post image {key}")
    return key


def get_post(post_id):
    post = db.session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


def list_active_posts(campus_location=None):
    """Posts whose pickup window has not closed, newest first."""
    query = Post.query.filter(Post.end_time > utcnow())
    if campus_location:
        query = query.filter(Post.campus_location == campus_location)
    return query.order_by(Post.created_at.desc(), Post.id.desc()).all()


def _authorize(post, user_id, is_admin, action):
    if not is_admin and post.user_id != user_id:
        logger.warning(f"User {user_id} tried to {action} post {post.id} owned by {post.user_id}")
        raise AuthorizationError(f"Unauthorized - you can only {action} your own posts")


def create_post(user_id, fields, image=None):
    values = clean_post_fields(fields, quantity_required=True)
    storage = get_storage(FOOD_IMAGES_BUCKET)

    image_path = upload_post_image(storage, image) if has_upload(image) else None

    quantity = values.pop('quantity')
    post = Post(
        user_id=user_id,
        quantity=quantity,
        total_quantity=quantity,
        quantity_left=quantity,
        image_path=image_path,
        **values
    )
    try:
        db.session.add(post)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Insert error creating post for user {user_id}: {e}", exc_info=True)
        if image_path:
            storage.remove([image_path])
        raise StorageError("Failed to create post") from e

    logger.info(f"Post {post.id} created by user {user_id} (quantity {quantity})")
    post_created.send(current_app._get_current_object(), post=post)
    return post


def update_post(user_id, is_admin, post_id, fields, image=None, remove_image=False):
    post = get_post(post_id)
    _authorize(post, user_id, is_admin, 'edit')
    values = clean_post_fields(fields, quantity_required=False)
    storage = get_storage(FOOD_IMAGES_BUCKET)

    new_total = values.pop('quantity') or post.original_quantity
    old_image = post.image_path
    image_path = old_image
    uploaded = None
    stale_images = []
    if remove_image and old_image:
        image_path = None
        stale_images.append(old_image)
    elif has_upload(image):
        uploaded = image_path = upload_post_image(storage, image)
        if old_image:
            stale_images.append(old_image)

    # Keep reserved units reserved: shift availability by the change in supply, floored at 0
    left = Post.quantity_left + new_total - func.coalesce(Post.total_quantity, Post.quantity)
    values.update({
        'quantity': new_total,
        'total_quantity': new_total,
        'quantity_left': case((left < 0, 0), else_=left),
        'image_path': image_path,
        'updated_at': utcnow(),
    })
    try:
        Post.query.filter(Post.id == post.id).update(
            {getattr(Post, name): value for name, value in values.items()},
            synchronize_session=False,
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Update error for post {post_id}: {e}", exc_info=True)
        if uploaded:
            storage.remove([uploaded])
        raise StorageError("Failed to update post") from e

    if stale_images and not storage.remove(stale_images):
        logger.warning(f"Post {post_id}: old image {old_image} could not be removed")

    db.session.refresh(post)
    logger.info(f"Post {post.id} updated by user {user_id} "
                f"(total {new_total}, left {post.quantity_left})")
    post_updated.send(current_app._get_current_object(), post=post)
    return post


def delete_post(user_id, is_admin, post_id):
    """Delete a post and its reservations. Returns False if the image could not be removed."""
    post = get_post(post_id)
    _authorize(post, user_id, is_admin, 'delete')

    image_path = post.image_path
    try:
        # Reservations first so none outlive the post
        released = Reservation.query.filter_by(post_id=post.id).delete(synchronize_session=False)
        db.session.delete(post)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Delete error for post {post_id}: {e}", exc_info=True)
        raise StorageError("Failed to delete post") from e

    image_removed = True
    if image_path:
        image_removed = get_storage(FOOD_IMAGES_BUCKET).remove([image_path])
        if not image_removed:
            logger.warning(f"Post {post_id} deleted but its image {image_path} was not removed")

    logger.info(f"Post {post_id} deleted by user {user_id} ({released} reservations released)")
    post_deleted.send(current_app._get_current_object(), post_id=post_id)
    return image_removed

"""
Input validation helpers.

Each validator returns (True, cleaned_value) or (False, error_message),
so callers decide how to report the failure.
"""
import os
import re
from datetime import datetime, timezone

from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from constants import (
    MAX_UPLOAD_SIZE, ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES, DEFAULT_IMAGE_EXTENSION,
    MIN_QUANTITY, MAX_QUANTITY, CAMPUS_LOCATIONS, MAX_EMAIL_LENGTH, MIN_PASSWORD_LENGTH, MAX_ROW_ID
)


def validate_email(email):
    """Validate email format"""
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def validate_password(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return True, password


def validate_quantity(quantity):
    """Validate a requested supply: a positive integer up to MAX_QUANTITY"""
    try:
        quantity_int = int(str(quantity).strip())
    except (ValueError, TypeError):
        return False, "Quantity must be a whole number"
    if quantity_int < MIN_QUANTITY or quantity_int > MAX_QUANTITY:
        return False, f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}"
    return True, quantity_int


def validate_campus_location(campus_location):
    if campus_location not in CAMPUS_LOCATIONS:
        return False, f"Campus location must be one of: {', '.join(CAMPUS_LOCATIONS)}"
    return True, campus_location


def parse_timestamp(value):
    """
    Parse an ISO-8601 timestamp into naive UTC.
    Offsets (including a trailing Z) are converted; naive input is taken as UTC.
    """
    if not value or not str(value).strip():
        return False, "Timestamp is required"
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return False, f"Invalid timestamp: {value}"
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return True, parsed


def image_extension(filename):
    """Lowercased extension of an uploaded filename, defaulting to jpg."""
    filename = secure_filename(filename or '')
    if '.' not in filename:
        return DEFAULT_IMAGE_EXTENSION
    return filename.rsplit('.', 1)[1].lower() or DEFAULT_IMAGE_EXTENSION


def validate_image_upload(file):
    """Validate uploaded image: size, extension, MIME type, and that Pillow can read it"""
    if not file or not file.filename:
        return False, "No file provided"

    # Check file size
    file.seek(0, os.SEEK_END)
    file_size = file.tell()
    file.seek(0)  # Reset file pointer

    if file_size == 0:
        return False, "File is empty"
    if file_size > MAX_UPLOAD_SIZE:
        return False, f"File size exceeds {MAX_UPLOAD_SIZE / (1024*1024):.1f}MB limit"

    # Check extension
    filename = secure_filename(file.filename)
    if not filename:
        return False, "Invalid filename"

    ext = filename.rsplit('.', 1)[1].lower() if '.' in filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        return False, f"File type not allowed. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    # Check MIME type
    mime_type = file.content_type
    if mime_type and mime_type.lower() not in ALLOWED_MIME_TYPES:
        return False, "Invalid file type"

    # Check contents really are an image
    try:
        with Image.open(file) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False, "File is not a valid image"
    finally:
        file.seek(0)

    return True, None


def is_truthy(value):
    return str(value or '').strip().lower() in ('true', '1', 'on', 'yes')


def parse_id(value):
    """Parse a row id from a query string, form field or JSON value"""
    if value is None or isinstance(value, bool) or str(value).strip() == '':
        return False, "id is required"
    try:
        id_int = int(str(value).strip())
    except (ValueError, TypeError):
        return False, f"Invalid id: {value}"
    if id_int < 1 or id_int > MAX_ROW_ID:
        return False, f"Invalid id: {value}"
    return True, id_int


def has_upload(file):
    """True when a file field was actually filled in"""
    return file is not None and bool(getattr(file, 'filename', None))


def validate_text(value, name):
    """Stripped text of a form or JSON field. None when absent; numbers, lists etc. are rejected"""
    if value is None:
        return True, None
    if not isinstance(value, str):
        return False, f"{name.capitalize()} must be text"
    return True, value.strip()

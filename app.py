import os
import logging
from dotenv import load_dotenv
load_dotenv()  # Load .env for local dev (production uses env vars directly)

from datetime import datetime, timezone
from flask import Flask, request, jsonify, send_from_directory, abort
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

# Import Models
from models import db, User, UserInfo

# Import Constants
from constants import (
    FOOD_IMAGES_BUCKET, AVATAR_BUCKET, MAX_UPLOAD_SIZE, MAX_NICKNAME_LENGTH,
    RATE_LIMIT_DEFAULT, RATE_LIMIT_LOGIN, RATE_LIMIT_REGISTER, RATE_LIMIT_RESERVE
)
from errors import MarketplaceError, ValidationError, AuthenticationError, StorageError
from storage import init_storage, get_storage
from validation import validate_email, validate_password, parse_id, is_truthy
import posts
import reservations
import accounts

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- APP CONFIGURATION ---
app = Flask(__name__)

# SECURITY: This secret key enables sessions. Set SECRET_KEY in the environment.
app.secret_key = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')

# 1. DATABASE CONFIGURATION
db_url = os.environ.get('DATABASE_URL')
if db_url:
    # Fix for SQLAlchemy: some hosts give 'postgres://', but SQLAlchemy needs 'postgresql://'
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
else:
    # Local fallback
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///campus_bites.db'

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# 2. STORAGE CONFIGURATION
app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', 'static/uploads')
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_SIZE + 1024 * 1024  # Image plus form fields

# 3. RATE LIMIT CONFIGURATION
app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', 'True').lower() == 'true'

# Initialize DB & Migrations
db.init_app(app)
migrate = Migrate(app, db)

# CSRF Protection (API clients send the token from /auth/csrf in X-CSRFToken)
csrf = CSRFProtect(app)

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=RATE_LIMIT_DEFAULT,
    storage_uri="memory://"
)

# Blob storage (S3 if AWS_S3_BUCKET is set, local disk otherwise)
init_storage(app)

# LOGIN MANAGER
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    raise AuthenticationError("Unauthorized")


# --- SERIALIZATION HELPERS ---

def _image_url(image_path):
    if not image_path:
        return None
    return get_storage(FOOD_IMAGES_BUCKET).get_public_url(image_path)


def serialize_post(post):
    data = post.to_dict()
    data['image_url'] = _image_url(post.image_path)
    return data


def serialize_reservation(reservation):
    data = reservation.to_dict()
    post = reservation.post
    if post is not None:
        snapshot = post.snapshot()
        snapshot['image_url'] = _image_url(post.image_path)
        data['posts'] = snapshot
    else:
        data['posts'] = None
    return data


def serialize_user(user):
    data = user.to_dict()
    data['profile'] = accounts.get_profile(user.id).to_dict()
    return data


def _request_fields():
    """Form fields for multipart/urlencoded requests, JSON body otherwise."""
    if request.form:
        return request.form
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_field(fields, name):
    """Raw string value of a field ('' if absent). JSON numbers and lists are rejected."""
    value = fields.get(name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name.capitalize()} must be text")
    return value or ''


def _require_id(value, message):
    valid, result = parse_id(value)
    if not valid:
        raise ValidationError(message)
    return result


# --- ERROR HANDLERS ---

@app.errorhandler(MarketplaceError)
def marketplace_error(error):
    if isinstance(error, StorageError):
        logger.error(f"{error.status_code} error on {request.method} {request.path}: {error}",
                     exc_info=error.__cause__ or error)
        # Storage detail (paths, driver errors) stays in the log
        return jsonify({'error': StorageError.default_message}), error.status_code
    logger.info(f"{error.status_code} on {request.method} {request.path}: {error.message}")
    return jsonify({'error': error.message}), error.status_code


@app.errorhandler(CSRFError)
def csrf_error(error):
    logger.warning(f"CSRF error: {error.description}")
    return jsonify({'error': error.description}), 400


@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 error: {request.url}")
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(413)
def request_entity_too_large(error):
    logger.warning("413 error: File too large")
    return jsonify({'error': f"File is too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB."}), 413


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 error: {error}", exc_info=True)
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500


# =========================================================
# SECTION 1: HEALTH & STATIC UPLOADS
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint for monitoring and load balancers"""
    try:
        db.session.execute(db.text('SELECT 1'))
        health_status = {
            'status': 'healthy',
            'database': 'connected',
            'storage': 's3' if get_storage(FOOD_IMAGES_BUCKET).is_s3() else 'local',
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        return jsonify(health_status), 200
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), 503


@app.route('/uploads/<bucket>/<path:key>')
def uploaded_file(bucket, key):
    """Serve images from local disk storage (S3 objects are served by S3/CDN)."""
    if bucket not in (FOOD_IMAGES_BUCKET, AVATAR_BUCKET):
        abort(404)
    return send_from_directory(os.path.join(app.config['UPLOAD_FOLDER'], bucket), key)


# =========================================================
# SECTION 2: AUTH
# =========================================================

@app.route('/auth/csrf')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@app.route('/auth/register', methods=['POST'])
@limiter.limit(RATE_LIMIT_REGISTER)
def register():
    fields = _request_fields()
    email = _text_field(fields, 'email').strip().lower()
    password = _text_field(fields, 'password')

    if not validate_email(email):
        raise ValidationError("Please provide a valid email address.")
    valid, result = validate_password(password)
    if not valid:
        raise ValidationError(result)
    if User.query.filter_by(email=email).first():
        raise ValidationError("An account with this email already exists.")

    nickname = _text_field(fields, 'nickname').strip() or None
    if nickname and len(nickname) > MAX_NICKNAME_LENGTH:
        raise ValidationError(f"Nickname must be under {MAX_NICKNAME_LENGTH} characters")

    user = User(email=email, password_hash=generate_password_hash(password))
    try:
        db.session.add(user)
        db.session.flush()
        db.session.add(UserInfo(id=user.id, nickname=nickname))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError("Failed to create account") from e

    login_user(user)
    logger.info(f"New user registered: {email}")
    return jsonify({'success': True, 'user': serialize_user(user)}), 201


@app.route('/auth/login', methods=['POST'])
@limiter.limit(RATE_LIMIT_LOGIN)
def login():
    fields = _request_fields()
    email = _text_field(fields, 'email').strip().lower()
    password = _text_field(fields, 'password')

    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = User.query.filter_by(email=email).first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        raise AuthenticationError("Invalid email or password.")

    login_user(user)
    return jsonify({'success': True, 'user': serialize_user(user)})


@app.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})


# =========================================================
# SECTION 3: POSTS
# =========================================================

@app.route('/posts', methods=['GET'])
def list_posts():
    if request.args.get('id'):
        post_id = _require_id(request.args.get('id'), "Invalid post id")
        return jsonify({'post': serialize_post(posts.get_post(post_id))})
    active = posts.list_active_posts(campus_location=request.args.get('campus_location'))
    return jsonify({'posts': [serialize_post(p) for p in active]})


@app.route('/posts', methods=['POST'])
@login_required
def create_post():
    post = posts.create_post(current_user.id, _request_fields(), image=request.files.get('image'))
    return jsonify({
        'success': True,
        'post': serialize_post(post),
        'message': 'Post created successfully'
    }), 201


@app.route('/posts', methods=['PUT'])
@login_required
def update_post():
    fields = _request_fields()
    post_id = _require_id(fields.get('id'), "Missing required fields")
    post = posts.update_post(
        current_user.id,
        bool(current_user.is_admin),
        post_id,
        fields,
        image=request.files.get('image'),
        remove_image=is_truthy(fields.get('remove_image')),
    )
    return jsonify({
        'success': True,
        'post': serialize_post(post),
        'message': 'Post updated successfully'
    })


@app.route('/posts', methods=['DELETE'])
@login_required
def delete_post():
    post_id = _require_id(request.args.get('id'), "Post id is required")
    image_removed = posts.delete_post(current_user.id, bool(current_user.is_admin), post_id)
    return jsonify({
        'success': True,
        'image_removed': image_removed,
        'message': 'Post deleted successfully'
    })


# =========================================================
# SECTION 4: RESERVATIONS
# =========================================================

@app.route('/reservations', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_RESERVE)
def create_reservation():
    reservation = reservations.create_reservation(current_user.id, _request_fields().get('post_id'))
    return jsonify({
        'success': True,
        'reservation': reservation.to_dict(),
        'message': 'Successfully reserved post'
    })


@app.route('/reservations', methods=['GET'])
@login_required
def list_reservations():
    rows = reservations.list_reservations(current_user.id)
    return jsonify({'reservations': [serialize_reservation(r) for r in rows]})


@app.route('/reservations', methods=['DELETE'])
@login_required
def cancel_reservation():
    reservation_id = _require_id(request.args.get('id'), "reservation id is required")
    reservations.cancel_reservation(current_user.id, reservation_id)
    return jsonify({'success': True, 'message': 'Reservation cancelled'})


# =========================================================
# SECTION 5: ACCOUNT
# =========================================================

@app.route('/user', methods=['GET'])
@login_required
def get_user():
    return jsonify({'user': serialize_user(current_user)})


@app.route('/user', methods=['PUT'])
@login_required
def update_user():
    fields = _request_fields()
    accounts.update_profile(
        current_user.id,
        nickname=fields.get('nickname'),
        avatar=request.files.get('avatar'),
    )
    return jsonify({'success': True, 'user': serialize_user(current_user)})


@app.route('/user', methods=['DELETE'])
@login_required
def delete_user():
    user_id = current_user.id
    blobs_removed = accounts.purge_account(user_id)
    logout_user()
    logger.info(f"Account {user_id} deleted and signed out")
    return jsonify({
        'success': True,
        'blobs_removed': blobs_removed,
        'message': 'Account deleted successfully'
    })


if __name__ == '__main__':
    with app.app_context():
        # Only create DB if it doesn't exist (Local SQLite check)
        # In production, we use migrations.
        if not os.path.exists('instance/campus_bites.db') and 'DATABASE_URL' not in os.environ:
            db.create_all()
    app.run(debug=os.environ.get('FLASK_DEBUG', 'False').lower() == 'true')

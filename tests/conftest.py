"""
Pytest configuration and fixtures for Campus Bites tests.

Fixtures are reusable test data/objects that tests can use.
Think of them as "test helpers" that set up common scenarios.
"""
import os
import shutil
import tempfile
from datetime import timedelta
from io import BytesIO

import pytest
from PIL import Image

# Point the app at a throwaway database and upload folder before it is imported
_TEST_DIR = tempfile.mkdtemp(prefix='campus-bites-tests-')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ['UPLOAD_FOLDER'] = os.path.join(_TEST_DIR, 'uploads')
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.pop('AWS_S3_BUCKET', None)

from app import app, db  # noqa: E402
from models import User, UserInfo, Post, Reservation, utcnow  # noqa: E402
from werkzeug.datastructures import FileStorage  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402


def png_bytes(color='red'):
    """A tiny but real PNG image."""
    buf = BytesIO()
    Image.new('RGB', (8, 8), color).save(buf, 'PNG')
    return buf.getvalue()


def image_upload(filename='lunch.png', content_type='image/png', data=None):
    """FileStorage like the one Flask hands to a view for an uploaded file."""
    return FileStorage(
        stream=BytesIO(png_bytes() if data is None else data),
        filename=filename,
        content_type=content_type,
    )


def post_form(**overrides):
    """Valid form fields for creating/updating a post."""
    form = {
        'title': 'Leftover pizza',
        'location': 'CDS 1101',
        'campus_location': 'East Campus',
        'description': 'Cheese and pepperoni from the club meeting',
        'quantity': '5',
        'end_time': (utcnow() + timedelta(hours=2)).isoformat(),
    }
    form.update(overrides)
    return form


def login(client, user):
    """Log the test client in as user by writing the Flask-Login session keys."""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture(scope='function')
def client():
    """
    Create a test client for the application.

    This fixture:
    - Sets up test configuration
    - Creates all database tables in a temporary SQLite database
    - Yields a test client you can use to make requests
    - Drops the tables and removes uploaded files after the test

    No app context is held open while the test runs, so every request
    loads its own user. Tests that touch the database directly open one
    with `with app.app_context():`.
    """
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False  # Disable CSRF for easier testing
    app.config['SECRET_KEY'] = 'test-secret-key'

    with app.app_context():
        db.create_all()

    yield app.test_client()

    with app.app_context():
        db.session.remove()
        db.drop_all()
    shutil.rmtree(app.config['UPLOAD_FOLDER'], ignore_errors=True)
    for bucket in app.extensions['storage'].values():
        os.makedirs(bucket.root, exist_ok=True)


@pytest.fixture
def make_user(client):
    """Factory: make_user('a@example.com', is_admin=False) -> User (with profile row)."""
    def _make_user(email, is_admin=False, nickname=None, avatar_url=None):
        with app.app_context():
            user = User(
                email=email,
                password_hash=generate_password_hash('testpass123'),
                is_admin=is_admin,
            )
            db.session.add(user)
            db.session.flush()
            db.session.add(UserInfo(id=user.id, nickname=nickname, avatar_url=avatar_url))
            db.session.commit()
            # Access attributes to ensure they're loaded before session closes
            # This prevents DetachedInstanceError when accessing these later
            _ = user.id, user.email, user.is_admin
            return user
    return _make_user


@pytest.fixture
def make_post(client):
    """Factory: make_post(owner, quantity=5, ...) -> Post inserted directly in the database."""
    def _make_post(owner, quantity=5, quantity_left=None, end_time=None, image_path=None,
                   title='Bagels', campus_location='South Campus', legacy=False):
        with app.app_context():
            post = Post(
                user_id=owner.id,
                title=title,
                location='GSU Lobby',
                campus_location=campus_location,
                description='Assorted bagels',
                end_time=end_time or (utcnow() + timedelta(hours=3)),
                quantity=quantity,
                total_quantity=None if legacy else quantity,
                quantity_left=quantity if quantity_left is None else quantity_left,
                image_path=image_path,
            )
            db.session.add(post)
            db.session.commit()
            _ = post.id, post.user_id, post.quantity_left, post.image_path
            return post
    return _make_post


@pytest.fixture
def test_user(make_user):
    """A regular user who owns posts. Email: owner@example.com, password: testpass123"""
    return make_user('owner@example.com', nickname='Owner')


@pytest.fixture
def other_user(make_user):
    """A second regular user who reserves food."""
    return make_user('hungry@example.com', nickname='Hungry')


@pytest.fixture
def test_admin_user(make_user):
    """An admin user (may edit/delete any post)."""
    return make_user('admin@example.com', is_admin=True)


@pytest.fixture
def test_post(make_post, test_user):
    """An active post with quantity 5 owned by test_user."""
    return make_post(test_user, quantity=5)


@pytest.fixture
def authenticated_client(client, test_user):
    """Client logged in as test_user (the post owner)."""
    return login(client, test_user)


@pytest.fixture
def reserver_client(client, other_user):
    """Client logged in as other_user."""
    return login(client, other_user)


@pytest.fixture
def admin_client(client, test_admin_user):
    """Client logged in as the admin user."""
    return login(client, test_admin_user)


def fetch_post(post_id):
    """Fresh copy of a post straight from the database (None if deleted)."""
    with app.app_context():
        post = db.session.get(Post, post_id)
        if post is not None:
            _ = post.quantity_left, post.total_quantity, post.quantity, post.image_path, post.title
        return post


def count_reservations(**filters):
    with app.app_context():
        return Reservation.query.filter_by(**filters).count()

"""
Tests for the maintenance scripts.

Run: pytest tests/test_scripts.py -v
"""
import os

import pytest

from app import app
from conftest import png_bytes
from constants import FOOD_IMAGES_BUCKET
from models import Post, User
from reset_db import reset_database


@pytest.mark.integration
class TestResetDatabase:
    """Test reset_db.reset_database()"""

    def _stored_image(self):
        path = os.path.join(app.config['UPLOAD_FOLDER'], FOOD_IMAGES_BUCKET, 'old.png')
        with open(path, 'wb') as f:
            f.write(png_bytes())
        return path

    def test_reset_empties_tables_and_uploads(self, test_post):
        path = self._stored_image()

        reset_database()

        with app.app_context():
            assert Post.query.count() == 0
            assert User.query.count() == 0
        assert not os.path.exists(path)
        assert os.path.isdir(os.path.dirname(path))

    def test_keep_uploads(self, test_post):
        path = self._stored_image()
        reset_database(clear_uploads=False)
        assert os.path.exists(path)

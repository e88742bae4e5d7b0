#!/usr/bin/env python3
"""
Drop every table and recreate it from the current models.

Local image buckets are emptied too, since no row points at them any more.
S3 objects are left alone.

Usage:
  python reset_db.py
  python reset_db.py --keep-uploads
"""
import os
import shutil
import argparse

from app import app, db


def reset_database(clear_uploads=True):
    with app.app_context():
        db.drop_all()
        db.create_all()
    if clear_uploads:
        for backend in app.extensions['storage'].values():
            if not backend.is_s3():
                shutil.rmtree(backend.root, ignore_errors=True)
                os.makedirs(backend.root, exist_ok=True)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Reset the Campus Bites database')
    parser.add_argument('--keep-uploads', action='store_true', help='Leave local image files in place')
    args = parser.parse_args()
    reset_database(clear_uploads=not args.keep_uploads)
    print("✅ Database has been reset! You can now register.")

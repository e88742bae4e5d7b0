#!/usr/bin/env python3
"""
One-time migration: Upload existing post images and avatars from local disk to S3.

Run this after deploying S3 support but before removing the local upload folder.
Requires: AWS_S3_BUCKET, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY (or default creds)
Optional: AWS_S3_REGION (default us-east-1), AWS_S3_CDN_URL

Usage:
  # From project root, with .env or env vars set:
  python scripts/migrate_photos_to_s3.py

  # Specify local upload folder (default: UPLOAD_FOLDER or static/uploads)
  python scripts/migrate_photos_to_s3.py --folder /path/to/uploads

  # Delete from disk after successful upload (use with caution)
  python scripts/migrate_photos_to_s3.py --delete-after
"""
import os
import sys
import argparse
import mimetypes

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

if not os.environ.get("AWS_S3_BUCKET"):
    print("Error: AWS_S3_BUCKET must be set. Add it to .env or export it.")
    sys.exit(1)

from app import app, db
from accounts import resolve_avatar_path
from constants import FOOD_IMAGES_BUCKET, AVATAR_BUCKET
from errors import StorageError
from models import Post, UserInfo
from storage import S3Storage


def collect_keys():
    """Storage keys referenced by the database, per bucket."""
    post_keys = {p.image_path.strip() for p in Post.query.all() if p.image_path and p.image_path.strip()}
    avatar_keys = set()
    for profile in UserInfo.query.all():
        key = resolve_avatar_path(profile.avatar_url, profile.id)
        if key:
            avatar_keys.add(key)
    return {FOOD_IMAGES_BUCKET: post_keys, AVATAR_BUCKET: avatar_keys}


def main():
    parser = argparse.ArgumentParser(description="Migrate post images and avatars from disk to S3")
    parser.add_argument("--folder", help="Local upload folder (default: UPLOAD_FOLDER or static/uploads)")
    parser.add_argument("--delete-after", action="store_true", help="Delete from disk after successful upload")
    parser.add_argument("--dry-run", action="store_true", help="List files that would be migrated without uploading")
    args = parser.parse_args()

    folder = args.folder or os.environ.get("UPLOAD_FOLDER", "static/uploads")
    if not os.path.isdir(folder):
        print(f"Error: Folder {folder} does not exist.")
        sys.exit(1)

    s3_bucket = os.environ.get("AWS_S3_BUCKET")
    region = os.environ.get("AWS_S3_REGION", "us-east-1")
    cdn_url = os.environ.get("AWS_S3_CDN_URL")

    migrated = 0
    skipped_s3 = 0
    skipped_missing = 0
    errors = 0

    with app.app_context():
        keys_by_bucket = collect_keys()
        print(f"Found {sum(len(k) for k in keys_by_bucket.values())} stored images in database.")

        for bucket, keys in keys_by_bucket.items():
            s3 = S3Storage(s3_bucket=s3_bucket, region=region, bucket=bucket, cdn_url=cdn_url)
            for key in sorted(keys):
                local_path = os.path.join(folder, bucket, key)
                if not os.path.exists(local_path):
                    skipped_missing += 1
                    if args.dry_run:
                        print(f"  [MISSING] {bucket}/{key}")
                    continue

                if s3.exists(key):
                    skipped_s3 += 1
                    if args.dry_run:
                        print(f"  [EXISTS] {bucket}/{key}")
                    continue

                if args.dry_run:
                    print(f"  [WOULD UPLOAD] {bucket}/{key}")
                    migrated += 1
                    continue

                try:
                    with open(local_path, "rb") as f:
                        s3.upload(f.read(), key, content_type=mimetypes.guess_type(key)[0])
                    migrated += 1
                    print(f"  Uploaded: {bucket}/{key}")
                    if args.delete_after:
                        os.remove(local_path)
                        print("    Deleted from disk")
                except (OSError, StorageError) as e:
                    errors += 1
                    print(f"  ERROR {bucket}/{key}: {e}", file=sys.stderr)
                    continue

                # Avatar URLs are stored whole, so point them at S3
                if bucket == AVATAR_BUCKET:
                    user_id = int(key.split("/", 1)[0])
                    profile = db.session.get(UserInfo, user_id)
                    if profile is not None:
                        profile.avatar_url = s3.get_public_url(key)

        if not args.dry_run:
            db.session.commit()

    print(f"\nDone. Migrated: {migrated}, Already in S3: {skipped_s3}, Missing: {skipped_missing}, Errors: {errors}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Grant or revoke admin access by email. Admins may edit and delete any post.

Usage:
  FLASK_APP=app python set_admin.py your@email.com
  FLASK_APP=app python set_admin.py your@email.com --revoke
"""
import sys
import argparse

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Grant admin access by email')
    parser.add_argument('email', help='Email address')
    parser.add_argument('--revoke', action='store_true', help='Remove admin access instead')
    args = parser.parse_args()

    from app import app, db
    from models import User
    from sqlalchemy import func

    with app.app_context():
        email_lower = args.email.strip().lower()
        user = User.query.filter(func.lower(User.email) == email_lower).first()
        if not user:
            print(f"No account for {email_lower}. They need to register first.")
            sys.exit(1)
        user.is_admin = not args.revoke
        db.session.commit()
        print(f"Done! {email_lower} is {'no longer' if args.revoke else 'now'} an admin.")

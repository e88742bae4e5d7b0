from datetime import timedelta

from werkzeug.security import generate_password_hash

from app import app, db
from models import User, UserInfo, Post, utcnow

# This script populates your DB with a couple of demo accounts and posts.
# Both demo accounts use the password "password123".
DEMO_USERS = [
    {"email": "chef@example.com", "nickname": "Chef"},
    {"email": "hungry@example.com", "nickname": "Hungry"},
]

DEMO_POSTS = [
    {"title": "Leftover pizza", "location": "CDS 1101", "campus_location": "East Campus",
     "description": "Cheese and pepperoni from the club meeting", "quantity": 8, "hours": 2},
    {"title": "Bagels", "location": "GSU Lobby", "campus_location": "South Campus",
     "description": "Assorted, with cream cheese", "quantity": 12, "hours": 4},
    {"title": "Fruit cups", "location": "Warren Towers", "campus_location": "West Campus",
     "description": None, "quantity": 5, "hours": 1},
]

with app.app_context():
    users = []
    for data in DEMO_USERS:
        user = User.query.filter_by(email=data["email"]).first()
        if not user:
            user = User(email=data["email"], password_hash=generate_password_hash("password123"))
            db.session.add(user)
            db.session.flush()
            db.session.add(UserInfo(id=user.id, nickname=data["nickname"]))
        users.append(user)

    owner = users[0]
    for data in DEMO_POSTS:
        exists = Post.query.filter_by(user_id=owner.id, title=data["title"]).first()
        if not exists:
            db.session.add(Post(
                user_id=owner.id,
                title=data["title"],
                location=data["location"],
                campus_location=data["campus_location"],
                description=data["description"],
                end_time=utcnow() + timedelta(hours=data["hours"]),
                total_quantity=data["quantity"],
                quantity=data["quantity"],
                quantity_left=data["quantity"],
            ))

    db.session.commit()
    print("✅ Demo users and posts seeded!")

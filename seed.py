"""
Seed a local database with a demo author and a handful of posts.

    python seed.py
"""
from datetime import timedelta

from scribe.auth import get_password_hash
from scribe.database import SessionLocal, engine, Base, utc_now
from scribe.models import Post, PostRevision, PostStatus, User, UserRole
from scribe.services.cache import NullCache
from scribe.services.posts import Actor, PostLifecycleController
from scribe.services.scheduler import InMemoryJobScheduler

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

# Clear existing data
db.query(PostRevision).delete()
db.query(Post).delete()
db.query(User).filter(User.email == "demo@example.com").delete()
db.commit()

author = User(
    username="demo",
    email="demo@example.com",
    hashed_password=get_password_hash("demopassword"),
    role=UserRole.AUTHOR.value,
)
db.add(author)
db.commit()
db.refresh(author)

# No broker is needed here; scheduled posts are picked up by the check-scheduled sweep
controller = PostLifecycleController(db, NullCache(), InMemoryJobScheduler())
actor = Actor.from_user(author)

posts = [
    ("Welcome to Scribe", "This is the first published post on the demo blog.", PostStatus.PUBLISHED, None),
    ("Writing in drafts", "Drafts stay private until you publish or schedule them.", PostStatus.DRAFT, None),
    (
        "Coming soon",
        "This post publishes itself tomorrow once the worker is running.",
        PostStatus.SCHEDULED,
        utc_now() + timedelta(days=1),
    ),
]

for title, content, status, scheduled_for in posts:
    controller.create_post(actor, title, content, status=status, scheduled_for=scheduled_for)

first = db.query(Post).filter(Post.slug == "welcome-to-scribe").one()
controller.update_post(first.id, {"content": first.content + " It has been edited once."}, actor)

db.close()

print("Database seeded successfully!")
print("- 1 author (demo@example.com / demopassword)")
print(f"- {len(posts)} posts")
print("- 1 revision")

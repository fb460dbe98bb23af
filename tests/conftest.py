"""
Pytest configuration and fixtures for Scribe API tests.
"""
import os
import tempfile
from datetime import timedelta

# Keep the application's own engine, cache and upload dir away from real services
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="scribe-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scribe.auth import create_access_token, get_password_hash
from scribe.database import Base, get_db, utc_now
from scribe.dependencies import get_cache, get_job_scheduler, get_upload_dir
from scribe.limiter import limiter
from scribe.main import app
from scribe.models.post import Post, PostStatus
from scribe.models.user import User, UserRole
from scribe.services.cache import InMemoryCache
from scribe.services.posts import Actor, PostLifecycleController
from scribe.services.scheduler import InMemoryJobScheduler

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    yield _test_session


class FakeClock:
    """Settable clock for lifecycle tests."""

    def __init__(self, start=None):
        self.now = start or utc_now().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    Base.metadata.create_all(bind=engine)
    _test_session = TestingSessionLocal()
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def cache():
    return InMemoryCache()


@pytest.fixture(scope="function")
def scheduler():
    return InMemoryJobScheduler()


@pytest.fixture(scope="function")
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture(scope="function")
def client(db, cache, scheduler, upload_dir):
    """Create a test client wired to the in-memory cache and scheduler."""
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_job_scheduler] = lambda: scheduler
    app.dependency_overrides[get_upload_dir] = lambda: upload_dir
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def controller(db, cache, clock):
    """Lifecycle controller driven by a fake clock."""
    return PostLifecycleController(db, cache, InMemoryJobScheduler(clock=clock), clock=clock)


def make_user(db, username, role=UserRole.AUTHOR.value, password="testpassword123"):
    user = User(
        username=username,
        email=f"{username}@example.com",
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_post(db, author, title="Stored post", content="Stored post content", **fields):
    now = utc_now()
    post = Post(
        author_id=author.id,
        title=title,
        content=content,
        slug=fields.pop("slug", title.lower().replace(" ", "-")),
        status=fields.pop("status", PostStatus.DRAFT.value),
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    return post


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test author."""
    return make_user(db, "testauthor")


@pytest.fixture(scope="function")
def other_user(db):
    return make_user(db, "otherauthor")


@pytest.fixture(scope="function")
def admin_user(db):
    return make_user(db, "admin", role=UserRole.ADMIN.value)


@pytest.fixture(scope="function")
def actor(test_user):
    return Actor.from_user(test_user)


@pytest.fixture(scope="function")
def other_actor(other_user):
    return Actor.from_user(other_user)


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture(scope="function")
def auth_headers(test_user):
    """Get auth headers for the test user."""
    return headers_for(test_user)


@pytest.fixture(scope="function")
def other_headers(other_user):
    return headers_for(other_user)


@pytest.fixture(scope="function")
def post_factory(db):
    """Insert posts directly, bypassing the lifecycle controller."""
    def factory(author, **fields):
        return make_post(db, author, **fields)
    return factory


@pytest.fixture(scope="function")
def user_factory(db):
    def factory(username, **kwargs):
        return make_user(db, username, **kwargs)
    return factory


@pytest.fixture(scope="function")
def admin_headers(admin_user):
    return headers_for(admin_user)

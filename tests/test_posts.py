"""
Tests for posts endpoints.
"""
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from scribe.database import utc_now
from scribe.models.post import Post, PostStatus
from scribe.models.post_revision import PostRevision
from scribe.services.cache import post_key
from scribe.services.posts import PostLifecycleController
from scribe.services.scheduler import JobName


def _iso(dt):
    return dt.isoformat() + "Z"


def create_post(client, headers, **body):
    payload = {"title": "My first post", "content": "Some content that is long enough"}
    payload.update(body)
    response = client.post("/api/posts", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestPostsEndpoints:
    """Test posts endpoints."""

    def test_create_post(self, client, test_user, auth_headers):
        """Test creating a post."""
        data = create_post(client, auth_headers)
        assert data["title"] == "My first post"
        assert data["slug"] == "my-first-post"
        assert data["status"] == "DRAFT"
        assert data["author_id"] == test_user.id
        assert data["published_at"] is None

    def test_create_post_unauthenticated(self, client):
        """Test creating a post without auth fails."""
        response = client.post("/api/posts", json={"title": "Title", "content": "Long enough content"})
        assert response.status_code == 401

    def test_create_post_validation(self, client, auth_headers):
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"title": "ab", "content": "short"},
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error_code"] == "VALIDATION_ERROR"
        assert {e["field"] for e in data["details"]["errors"]} == {"title", "content"}

    def test_create_published_post_sets_published_at(self, client, auth_headers):
        data = create_post(client, auth_headers, status="PUBLISHED")
        assert data["status"] == "PUBLISHED"
        assert data["published_at"] is not None

    def test_create_scheduled_post_enqueues_job(self, client, auth_headers, scheduler):
        when = utc_now() + timedelta(hours=1)
        data = create_post(client, auth_headers, status="SCHEDULED", scheduledFor=_iso(when))
        assert data["status"] == "SCHEDULED"
        jobs = scheduler.pending_for(data["id"])
        assert len(jobs) == 1
        assert jobs[0].job_name == JobName.PUBLISH_POST
        assert 3500 < jobs[0].delay_seconds <= 3600

    def test_create_scheduled_post_requires_future_time(self, client, auth_headers, scheduler):
        past = utc_now() - timedelta(minutes=5)
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={
                "title": "Backdated",
                "content": "Some content that is long enough",
                "status": "SCHEDULED",
                "scheduledFor": _iso(past),
            },
        )
        assert response.status_code == 400
        assert scheduler.jobs == []

    def test_duplicate_titles_get_distinct_slugs(self, client, auth_headers):
        first = create_post(client, auth_headers)
        second = create_post(client, auth_headers)
        assert first["slug"] != second["slug"]
        assert second["slug"].startswith("my-first-post-")

    def test_get_posts_empty(self, client, auth_headers):
        """Test getting posts when none exist."""
        response = client.get("/api/posts", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["data"] == []
        assert data["pagination"]["total"] == 0

    def test_get_posts_only_own(self, client, test_user, other_user, auth_headers, post_factory):
        """Test listing returns only the caller's posts."""
        post_factory(test_user, title="Mine")
        post_factory(other_user, title="Theirs")

        response = client.get("/api/posts", headers=auth_headers)
        assert response.status_code == 200
        titles = [p["title"] for p in response.json()["data"]]
        assert titles == ["Mine"]

    def test_get_posts_filter_by_status(self, client, test_user, auth_headers, post_factory):
        post_factory(test_user, title="Draft one")
        post_factory(test_user, title="Live one", status="PUBLISHED", published_at=utc_now())

        response = client.get("/api/posts?status=PUBLISHED", headers=auth_headers)
        assert [p["title"] for p in response.json()["data"]] == ["Live one"]

        response = client.get("/api/posts?status=ARCHIVED", headers=auth_headers)
        assert response.status_code == 400

    def test_get_post_of_other_user_forbidden(self, client, other_user, auth_headers, post_factory):
        post = post_factory(other_user)
        response = client.get(f"/api/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 403

    def test_get_missing_post(self, client, auth_headers):
        response = client.get("/api/posts/9999", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_update_post(self, client, auth_headers):
        created = create_post(client, auth_headers)
        response = client.put(
            f"/api/posts/{created['id']}",
            headers=auth_headers,
            json={"title": "Renamed post"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Renamed post"
        assert data["content"] == created["content"]
        # slug is fixed at creation
        assert data["slug"] == created["slug"]

    def test_update_other_users_post_forbidden(self, client, db, other_user, auth_headers, post_factory):
        post = post_factory(other_user, title="Not yours")
        response = client.put(
            f"/api/posts/{post.id}",
            headers=auth_headers,
            json={"title": "Hijacked title"},
        )
        assert response.status_code == 403

        db.expire_all()
        assert db.get(Post, post.id).title == "Not yours"
        assert db.query(PostRevision).filter(PostRevision.post_id == post.id).count() == 0

    def test_delete_post(self, client, db, auth_headers):
        created = create_post(client, auth_headers)
        client.put(f"/api/posts/{created['id']}", headers=auth_headers, json={"title": "Edited"})

        response = client.delete(f"/api/posts/{created['id']}", headers=auth_headers)
        assert response.status_code == 204

        assert client.get(f"/api/posts/{created['id']}", headers=auth_headers).status_code == 404
        assert db.query(PostRevision).count() == 0

    def test_delete_other_users_post_forbidden(self, client, other_user, auth_headers, post_factory):
        post = post_factory(other_user)
        response = client.delete(f"/api/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 403


class TestPublishedEndpoints:
    """Public read path."""

    def test_draft_hidden_until_published(self, client, auth_headers):
        created = create_post(client, auth_headers)

        response = client.get(f"/api/posts/published/{created['id']}")
        assert response.status_code == 404

        response = client.post(f"/api/posts/{created['id']}/publish", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "PUBLISHED"

        response = client.get(f"/api/posts/published/{created['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == created["id"]
        assert data["author"]["username"] == "testauthor"

    def test_published_post_is_cached(self, client, auth_headers, cache):
        created = create_post(client, auth_headers, status="PUBLISHED")
        client.get(f"/api/posts/published/{created['id']}")
        assert post_key(created["id"]) in cache

    def test_update_invalidates_cached_post(self, client, auth_headers, cache):
        created = create_post(client, auth_headers, status="PUBLISHED")
        client.get(f"/api/posts/published/{created['id']}")

        client.put(
            f"/api/posts/{created['id']}",
            headers=auth_headers,
            json={"title": "Fresh title"},
        )
        assert post_key(created["id"]) not in cache
        response = client.get(f"/api/posts/published/{created['id']}")
        assert response.json()["title"] == "Fresh title"

    def test_unpublish_hides_post(self, client, auth_headers):
        created = create_post(client, auth_headers, status="PUBLISHED")
        client.get(f"/api/posts/published/{created['id']}")

        client.put(f"/api/posts/{created['id']}", headers=auth_headers, json={"status": "DRAFT"})
        assert client.get(f"/api/posts/published/{created['id']}").status_code == 404

    def test_list_published(self, client, test_user, post_factory):
        now = utc_now()
        post_factory(test_user, title="Older", status="PUBLISHED", published_at=now - timedelta(days=1))
        post_factory(test_user, title="Newer", status="PUBLISHED", published_at=now)
        post_factory(test_user, title="Hidden draft")

        response = client.get("/api/posts/published")
        assert response.status_code == 200
        data = response.json()
        assert [p["title"] for p in data["data"]] == ["Newer", "Older"]
        assert data["pagination"]["total"] == 2

    def test_list_published_pagination(self, client, test_user, post_factory):
        now = utc_now()
        for i in range(3):
            post_factory(
                test_user,
                title=f"Post {i}",
                status="PUBLISHED",
                published_at=now - timedelta(minutes=i),
            )

        response = client.get("/api/posts/published?page=2&limit=2")
        data = response.json()
        assert [p["title"] for p in data["data"]] == ["Post 2"]
        assert data["pagination"]["total_pages"] == 2
        assert data["pagination"]["has_prev"] is True
        assert data["pagination"]["has_next"] is False

    def test_list_published_search(self, client, test_user, post_factory):
        now = utc_now()
        post_factory(test_user, title="Python tips", status="PUBLISHED", published_at=now)
        post_factory(
            test_user,
            title="Gardening",
            content="Growing tomatoes with python-like vines",
            status="PUBLISHED",
            published_at=now,
        )
        post_factory(test_user, title="Cooking", status="PUBLISHED", published_at=now)

        response = client.get("/api/posts/published?search=python")
        titles = sorted(p["title"] for p in response.json()["data"])
        assert titles == ["Gardening", "Python tips"]

    def test_list_published_invalid_limit(self, client):
        response = client.get("/api/posts/published?limit=1000")
        assert response.status_code == 400


class TestScheduling:
    """Scheduling through the API and the job queue."""

    def test_schedule_then_publish_when_due(self, client, db, cache, auth_headers, scheduler):
        created = create_post(client, auth_headers)
        when = (utc_now() + timedelta(seconds=10)).replace(microsecond=0)

        response = client.post(
            f"/api/posts/{created['id']}/schedule",
            headers=auth_headers,
            json={"scheduledFor": _iso(when)},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "SCHEDULED"
        assert len(scheduler.pending_for(created["id"])) == 1

        # Within the delay window nothing has run
        assert scheduler.due(utc_now()) == []
        assert client.get(f"/api/posts/{created['id']}", headers=auth_headers).json()["status"] == "SCHEDULED"

        later = when + timedelta(seconds=1)
        worker = PostLifecycleController(db, cache, scheduler, clock=lambda: later)
        ran = scheduler.run_due({JobName.PUBLISH_POST: worker.publish_due_post}, now=later)
        assert ran == 1

        data = client.get(f"/api/posts/{created['id']}", headers=auth_headers).json()
        assert data["status"] == "PUBLISHED"
        assert data["scheduled_for"] == _iso(when)
        assert data["published_at"] == _iso(later)

    def test_schedule_requires_time(self, client, auth_headers):
        created = create_post(client, auth_headers)
        response = client.post(f"/api/posts/{created['id']}/schedule", headers=auth_headers, json={})
        assert response.status_code == 400

    def test_schedule_in_past_rejected(self, client, auth_headers):
        created = create_post(client, auth_headers)
        response = client.post(
            f"/api/posts/{created['id']}/schedule",
            headers=auth_headers,
            json={"scheduledFor": _iso(utc_now() - timedelta(hours=1))},
        )
        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["field"] == "scheduled_for"

    def test_schedule_other_users_post_forbidden(self, client, other_user, auth_headers, post_factory):
        post = post_factory(other_user)
        response = client.post(
            f"/api/posts/{post.id}/schedule",
            headers=auth_headers,
            json={"scheduledFor": _iso(utc_now() + timedelta(hours=1))},
        )
        assert response.status_code == 403

    def test_enqueue_failure_keeps_post_scheduled(self, client, auth_headers, scheduler):
        scheduler.fail_with = ConnectionError("broker down")
        when = utc_now() + timedelta(hours=1)
        data = create_post(client, auth_headers, status="SCHEDULED", scheduledFor=_iso(when))
        assert data["status"] == "SCHEDULED"
        assert scheduler.jobs == []


class TestRevisions:
    """Revision history endpoints."""

    def test_two_updates_two_revisions(self, client, auth_headers):
        created = create_post(client, auth_headers, title="Version zero")
        client.put(f"/api/posts/{created['id']}", headers=auth_headers, json={"title": "Version one"})
        client.put(
            f"/api/posts/{created['id']}",
            headers=auth_headers,
            json={"content": "Second edit of the content"},
        )

        response = client.get(f"/api/posts/{created['id']}/revisions", headers=auth_headers)
        assert response.status_code == 200
        revisions = response.json()
        assert len(revisions) == 2
        # newest first: the second revision holds the state after the first update
        assert revisions[0]["title_snapshot"] == "Version one"
        assert revisions[1]["title_snapshot"] == "Version zero"
        assert revisions[0]["revision_timestamp"] >= revisions[1]["revision_timestamp"]

    def test_revisions_forbidden_for_other_author(self, client, other_user, auth_headers, post_factory):
        post = post_factory(other_user)
        response = client.get(f"/api/posts/{post.id}/revisions", headers=auth_headers)
        assert response.status_code == 403

    def test_admin_can_list_revisions(self, client, test_user, auth_headers, admin_headers):
        created = create_post(client, auth_headers)
        client.put(f"/api/posts/{created['id']}", headers=auth_headers, json={"title": "Changed title"})

        response = client.get(f"/api/posts/{created['id']}/revisions", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_restore_revision(self, client, auth_headers):
        created = create_post(client, auth_headers, title="Original title", status="PUBLISHED")
        client.put(f"/api/posts/{created['id']}", headers=auth_headers, json={"title": "Changed title"})
        revision = client.get(f"/api/posts/{created['id']}/revisions", headers=auth_headers).json()[0]

        response = client.post(
            f"/api/posts/{created['id']}/revisions/{revision['id']}/restore",
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Original title"
        assert data["status"] == PostStatus.DRAFT.value

        revisions = client.get(f"/api/posts/{created['id']}/revisions", headers=auth_headers).json()
        assert len(revisions) == 2
        assert revisions[0]["title_snapshot"] == "Changed title"

    def test_restore_revision_of_other_post(self, client, auth_headers):
        first = create_post(client, auth_headers, title="First post")
        second = create_post(client, auth_headers, title="Second post")
        client.put(f"/api/posts/{first['id']}", headers=auth_headers, json={"title": "First edited"})
        revision = client.get(f"/api/posts/{first['id']}/revisions", headers=auth_headers).json()[0]

        response = client.post(
            f"/api/posts/{second['id']}/revisions/{revision['id']}/restore",
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestStoreFailures:
    """A failing commit surfaces as a 500 and leaves the store untouched."""

    @staticmethod
    def _fail_commits(db, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", failing_commit)

    def test_update_failure(self, client, db, auth_headers, monkeypatch):
        created = create_post(client, auth_headers, title="Stable title")
        self._fail_commits(db, monkeypatch)

        response = client.put(
            f"/api/posts/{created['id']}",
            headers=auth_headers,
            json={"title": "Lost title"},
        )
        monkeypatch.undo()

        assert response.status_code == 500
        data = response.json()
        assert data["ok"] is False
        assert data["error_code"] == "INTERNAL_ERROR"

        db.expire_all()
        assert db.get(Post, created["id"]).title == "Stable title"
        assert db.query(PostRevision).filter(PostRevision.post_id == created["id"]).count() == 0

    def test_create_failure(self, client, db, auth_headers, monkeypatch):
        self._fail_commits(db, monkeypatch)

        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"title": "Never stored", "content": "Some content that is long enough"},
        )
        monkeypatch.undo()

        assert response.status_code == 500
        assert response.json()["error_code"] == "INTERNAL_ERROR"
        assert db.query(Post).count() == 0

    def test_overlong_title_is_a_validation_error(self, client, auth_headers):
        response = client.post(
            "/api/posts",
            headers=auth_headers,
            json={"title": "t" * 256, "content": "Some content that is long enough"},
        )
        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["field"] == "title"

"""
Tests for the admin API.
"""

import pytest
from fastapi.testclient import TestClient

from chatmod.api.main import create_app
from chatmod.lib.config import Settings
from chatmod.lib.errors import StoreWriteError
from chatmod.lib.record_store import InMemoryCounterStore, InMemoryRecordStore
from chatmod.run_pipeline import Pipeline

from conftest import FakeBroker, FakeClock


@pytest.fixture
def pipeline():
    store = InMemoryRecordStore({"users": {"u1": {"email": "u1@example.com"}}})
    return Pipeline(
        config=Settings(admin_emails=["admin@example.com"]),
        store=store,
        counter_store=InMemoryCounterStore(),
        broker=FakeBroker(),
    )


@pytest.fixture
def client(pipeline):
    with TestClient(create_app(pipeline)) as test_client:
        yield test_client


def submit(client, text, author_id="u1"):
    return client.post("/messages", json={"author_id": author_id, "author_display_name": "Una", "text": text})


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_startup_seeds_rules(client, pipeline):
    assert pipeline.moderation_service.classifier.max_length == 800
    assert pipeline.moderation_service.server_classifier.max_length == 1000


class TestMessages:

    def test_submit_clean(self, client):
        response = submit(client, "hello there")
        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] is True
        assert body["verdict"] == "allow"
        assert body["flagged"] is False
        assert body["message"]["text"] == "hello there"

    def test_submit_severe_rejected(self, client):
        body = submit(client, "fuck off").json()
        assert body["accepted"] is False
        assert body["verdict"] == "autoDelete"
        assert body["reason"] == "profanity"
        assert body["message"] is None

    def test_submit_blank(self, client):
        response = submit(client, "   ")
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_rate_limited(self, client):
        for i in range(10):
            assert submit(client, f"msg {i}").status_code == 200
        response = submit(client, "one more")
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        assert response.json()["retry_after_seconds"] >= 1

    def test_manual_flag_and_delete(self, client):
        message_id = submit(client, "hmm").json()["message"]["id"]

        flag = client.post(f"/messages/{message_id}/flag", json={"flagged_by": "mod1"})
        assert flag.status_code == 200
        assert flag.json()["auto_flagged"] is False

        assert client.delete(f"/messages/{message_id}", params={"deleted_by": "mod1"}).status_code == 200
        assert client.delete(f"/messages/{message_id}", params={"deleted_by": "mod1"}).status_code == 404

    def test_search_export_and_user_history(self, client):
        submit(client, "Pizza tonight?")
        submit(client, "pasta for me", author_id="u2")

        found = client.get("/messages/search", params={"keyword": ["PIZZA", "nothing"]}).json()
        assert [m["text"] for m in found] == ["Pizza tonight?"]
        assert client.get("/messages/search").status_code == 422

        history = client.get("/users/u2/messages").json()
        assert [m["text"] for m in history] == ["pasta for me"]

        export = client.get("/messages/export").json()
        assert export["total_messages"] == 2
        assert {m["author_id"] for m in export["messages"]} == {"u1", "u2"}


class TestReview:

    def test_review_flow(self, client, pipeline):
        body = submit(client, "this is garbage").json()
        assert body["flagged"] is True
        message_id = body["message"]["id"]
        assert len(pipeline.broker.alerts) == 1

        queue = client.get("/flagged", params={"reviewed": False}).json()
        assert [f["id"] for f in queue] == [message_id]

        stats = client.get("/flagged/stats").json()
        assert stats["unreviewed"] == 1
        assert stats["by_severity"]["medium"] == 1

        review = client.post(f"/flagged/{message_id}/review", json={"reviewer_id": "mod1", "action": "deleted"})
        assert review.status_code == 200
        assert review.json()["resolution_action"] == "deleted"

        again = client.post(f"/flagged/{message_id}/review", json={"reviewer_id": "mod2", "action": "approved"})
        assert again.status_code == 409

    def test_review_missing(self, client):
        response = client.post("/flagged/nope/review", json={"reviewer_id": "mod1", "action": "approved"})
        assert response.status_code == 404


class TestUsers:

    def test_ban_lifecycle(self, client):
        bad = client.post("/users/u1/ban", json={"banned_by": "admin1", "reason": "spam", "type": "temporary"})
        assert bad.status_code == 400

        ban = client.post("/users/u1/ban", json={"banned_by": "admin1", "reason": "spam", "type": "permanent"})
        assert ban.status_code == 200
        assert ban.json()["is_active"] is True

        conflict = client.post("/users/u1/ban", json={"banned_by": "admin1", "reason": "x", "type": "permanent"})
        assert conflict.status_code == 409

        unban = client.post("/users/u1/unban", json={"revoked_by": "admin1", "reason": "appeal"})
        assert unban.status_code == 200
        assert unban.json()["is_active"] is False

        assert client.post("/users/u1/unban", json={"revoked_by": "admin1", "reason": "x"}).status_code == 404

    def test_role_and_warn(self, client):
        role = client.put("/users/u1/role", json={"role": "moderator", "updated_by": "admin1"})
        assert role.json()["permissions"]["can_moderate_messages"] is True

        warned = client.post("/users/u1/warn", json={"warned_by": "mod1", "reason": "tone"})
        assert warned.json()["warning_count"] == 1

    def test_suspend_unknown_user(self, client):
        response = client.post("/users/ghost/suspend", json={"suspended_by": "mod1", "reason": "x", "hours": 1})
        assert response.status_code == 404

    def test_stats(self, client):
        assert client.get("/users/stats").json()["total_users"] == 1


class TestAnalyticsAndReports:

    def test_chat_analytics(self, client):
        submit(client, "pizza tonight")
        body = client.get("/analytics/chat", params={"days": 1}).json()
        assert body["total_messages"] == 1
        assert body["top_users"][0]["email"] == "u1@example.com"

    def test_user_behavior(self, client):
        submit(client, "great game")
        body = client.get("/analytics/users/u1").json()
        assert body["total_messages"] == 1
        assert body["email"] == "u1@example.com"

    def test_live_and_recent_stats(self, client):
        submit(client, "one")
        submit(client, "two")
        submit(client, "three", author_id="u2")

        live = client.get("/analytics/live").json()
        assert live["total_messages"] == 3
        assert live["messages_last_hour"] == 3
        assert live["top_users"][0] == {"user_id": "u1", "display_name": "Una", "message_count": 2}

        recent = client.get("/analytics/recent", params={"sample_size": 1}).json()
        assert recent["message_count"] == 1
        assert recent["unique_users"] == 1

    def test_custom_report_needs_bounds(self, client):
        assert client.post("/reports", json={"type": "custom"}).status_code == 400

    def test_generate_and_list_reports(self, client):
        report = client.post("/reports", json={"type": "daily", "requested_by": "admin1"})
        assert report.status_code == 200
        assert report.json()["generated_by_user_id"] == "admin1"

        listed = client.get("/reports").json()
        assert [r["id"] for r in listed] == [report.json()["id"]]

        assert client.delete("/reports/expired").json() == {"deleted": 0}


class UnavailableCounterStore(InMemoryCounterStore):
    async def purge_expired(self):
        raise StoreWriteError("counters offline", path="counters")


def test_counter_purging_runs_with_the_app(client, pipeline):
    assert pipeline._purge_task is not None
    assert not pipeline._purge_task.done()


@pytest.mark.asyncio
async def test_purge_counters_drops_expired_buckets():
    clock = FakeClock()
    counters = InMemoryCounterStore(clock=clock.seconds)
    pipeline = Pipeline(config=Settings(), store=InMemoryRecordStore(), counter_store=counters, broker=FakeBroker())
    await counters.incr("ratelimit:u1:1", ttl_seconds=120)
    await counters.incr("ratelimit:u2:1", ttl_seconds=120)

    assert await pipeline.purge_counters() == 0
    clock.advance(120_000)
    assert await pipeline.purge_counters() == 2


@pytest.mark.asyncio
async def test_purge_failure_is_logged_not_raised():
    pipeline = Pipeline(
        config=Settings(), store=InMemoryRecordStore(), counter_store=UnavailableCounterStore(), broker=FakeBroker()
    )
    assert await pipeline.purge_counters() == 0

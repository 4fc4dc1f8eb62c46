"""Tests for the FastAPI publishing and render plan API.

WHY: The HTTP API is how the editor UI schedules posts and watches them
publish. Store refusals must surface as the right status codes, the
background publish run must actually drain the queue, and render plan
errors must come back as 400s rather than 500s.

HOW: Each test configures the app module with a fresh PublishStore, a
PublishScheduler on the conftest fakes and a TokenStore under tmp_path,
then drives it through FastAPI's TestClient. TestClient runs background
tasks before returning the response, so a publish run has finished by
the time the request returns.

RULES:
- Platform APIs and the renderer are never called (conftest fakes)
- Each test gets its own store (the module state is reset per test)
- Tests cover: happy paths, 404, 409, 400, 422 and 503
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from clipcast.errors import RenderError
from clipcast.publish.models import Destination, PostState, Queued, Rendering
from clipcast.publish.scheduler import PublishScheduler
from clipcast.publish.store import PublishStore
from clipcast.publish.tokens import TokenStore
from clipcast.server import app as app_module


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def renderer(make_renderer):
    return make_renderer()


@pytest.fixture
def api_store(tmp_path, renderer, make_adapter, no_sleep):
    """Configure the app with a fresh store and a fake-backed scheduler."""
    store = PublishStore()
    scheduler = PublishScheduler(
        store,
        renderer,
        {Destination.TIKTOK: make_adapter(), Destination.LOCAL: make_adapter()},
        sleep=no_sleep,
    )
    app_module.configure(store, scheduler, TokenStore(tmp_path / "tokens.json"))
    yield store
    app_module.configure(PublishStore(), None, None)


@pytest.fixture
def client(api_store):
    return TestClient(app_module.app)


def _create(client, **fields):
    body = {"destination": "tiktok", "clip_id": "clip-1", "text_content": "hello"}
    body.update(fields)
    resp = client.post("/posts", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class TestPosts:
    """CRUD endpoints under /posts."""

    def test_create_post(self, client):
        data = _create(client, hashtags=["#podcast", "clips"])
        assert data["destination"] == "tiktok"
        assert data["format"] == "9:16"
        assert data["status"] == "idle"
        assert data["status_data"] == {"status": "idle"}
        assert data["hashtags"] == ["podcast", "clips"]
        assert data["enabled"] is True

    def test_unknown_destination_is_422(self, client):
        resp = client.post("/posts", json={"destination": "myspace"})
        assert resp.status_code == 422

    def test_unknown_format_is_400(self, client):
        resp = client.post("/posts", json={"destination": "tiktok", "format": "5:4"})
        assert resp.status_code == 400
        assert "Unknown video format" in resp.json()["detail"]

    def test_list_posts_in_creation_order(self, client):
        first = _create(client)
        second = _create(client, destination="local")
        resp = client.get("/posts")
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()] == [first["id"], second["id"]]

    def test_get_post(self, client):
        post = _create(client)
        assert client.get("/posts/{}".format(post["id"])).json()["id"] == post["id"]

    def test_get_missing_post(self, client):
        resp = client.get("/posts/does-not-exist")
        assert resp.status_code == 404
        assert "does-not-exist" in resp.json()["detail"]

    def test_patch_fields(self, client):
        post = _create(client, source_snippet_id="snip-1")
        resp = client.patch(
            "/posts/{}".format(post["id"]),
            json={"text_content": "edited", "hashtags": ["new"], "enabled": False},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["text_content"] == "edited"
        assert data["source_snippet_id"] is None
        assert data["hashtags"] == ["new"]
        assert data["enabled"] is False

    def test_patch_invalid_format_is_400(self, client):
        post = _create(client)
        resp = client.patch("/posts/{}".format(post["id"]), json={"format": "7:3"})
        assert resp.status_code == 400

    def test_patch_invalid_render_scale_is_422(self, client):
        post = _create(client)
        resp = client.patch("/posts/{}".format(post["id"]), json={"render_scale": 0})
        assert resp.status_code == 422

    def test_patch_queued_post_is_409(self, client, api_store):
        post = _create(client, title="before")
        api_store.update_post_status(post["id"], Queued())
        resp = client.patch("/posts/{}".format(post["id"]), json={"title": "after"})
        assert resp.status_code == 409
        assert api_store.get_post(post["id"]).title == "before"

    def test_delete_post(self, client):
        post = _create(client)
        assert client.delete("/posts/{}".format(post["id"])).status_code == 204
        assert client.get("/posts/{}".format(post["id"])).status_code == 404

    def test_delete_in_flight_is_409(self, client, api_store):
        post = _create(client)
        api_store.update_post_status(post["id"], Queued())
        api_store.update_post_status(post["id"], Rendering())
        assert client.delete("/posts/{}".format(post["id"])).status_code == 409

    def test_duplicate(self, client):
        post = _create(client)
        resp = client.post("/posts/{}/duplicate".format(post["id"]))
        assert resp.status_code == 201
        assert resp.json()["id"] != post["id"]
        assert resp.json()["text_content"] == "hello"

    def test_duplicate_missing(self, client):
        assert client.post("/posts/nope/duplicate").status_code == 404

    def test_batch_enable_disable(self, client):
        _create(client)
        _create(client)
        assert client.post("/posts/disable-all").json() == {"count": 2}
        assert client.post("/posts/enable-all").json() == {"count": 2}


# ---------------------------------------------------------------------------
# Validation and status
# ---------------------------------------------------------------------------


class TestValidationAndStatus:

    def test_validation_reports_limits(self, client):
        post = _create(client)
        resp = client.get(
            "/posts/{}/validation".format(post["id"]), params={"clip_duration_s": 200}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert "Clip is 200s, max is 180s" in data["errors"]
        assert "Not connected - will need manual upload" in data["warnings"]

    def test_validation_connected(self, client, tmp_path):
        TokenStore(tmp_path / "tokens.json").save_token("tiktok", "t", "r", 9e12)
        post = _create(client)
        data = client.get(
            "/posts/{}/validation".format(post["id"]), params={"clip_duration_s": 30}
        ).json()
        assert data == {"valid": True, "errors": [], "warnings": []}

    def test_validation_without_duration_reports_missing_clip(self, client):
        post = _create(client)
        data = client.get("/posts/{}/validation".format(post["id"])).json()
        assert "Selected clip no longer exists" in data["errors"]

    def test_status_of_idle_post(self, client):
        post = _create(client)
        resp = client.get("/posts/{}/status".format(post["id"]))
        assert resp.json() == {
            "id": post["id"],
            "status": "idle",
            "upload_progress": 0.0,
            "processing_progress": 0.0,
            "video_id": None,
            "error_message": None,
        }


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class TestPublishing:
    """Start, cancel, retry and progress endpoints."""

    def test_start_publishes_in_background(self, client, api_store, renderer):
        first = _create(client)
        second = _create(client, destination="local")
        resp = client.post("/publishing/start")
        assert resp.status_code == 200
        assert resp.json() == {"count": 2}

        assert renderer.rendered == [first["id"], second["id"]]
        status = client.get("/posts/{}/status".format(first["id"])).json()
        assert status["status"] == "completed"
        assert status["video_id"] == "vid-1"

        progress = client.get("/publishing/progress").json()
        assert progress["completed"] == 2
        assert progress["percent"] == 100
        assert progress["is_publishing"] is False
        assert progress["current_post_id"] is None

    def test_start_again_does_not_republish(self, client, renderer):
        post = _create(client)
        client.post("/publishing/start")
        assert client.post("/publishing/start").json() == {"count": 0}
        assert renderer.rendered == [post["id"]]

    def test_disabled_posts_are_skipped(self, client, api_store):
        post = _create(client, enabled=False)
        assert client.post("/publishing/start").json() == {"count": 0}
        assert api_store.get_post(post["id"]).status is PostState.IDLE

    def test_missing_adapter_is_400(self, client, api_store):
        post = _create(client, destination="youtube-shorts", title="t")
        resp = client.post("/publishing/start")
        assert resp.status_code == 400
        assert "youtube-shorts" in resp.json()["detail"]
        assert api_store.get_post(post["id"]).status is PostState.IDLE

    def test_not_configured_is_503(self, client):
        app_module.configure(PublishStore(), None, None)
        assert client.post("/publishing/start").status_code == 503
        assert client.post("/publishing/retry-failed").status_code == 503

    def test_cancel(self, client, api_store):
        _create(client)
        _create(client)
        api_store.start_publishing()
        assert client.post("/publishing/cancel").json() == {"count": 2}
        assert api_store.get_queued_posts() == []

    def test_failure_then_retry(self, client, renderer):
        post = _create(client)
        renderer.error = RenderError("out of disk")
        client.post("/publishing/start")
        status = client.get("/posts/{}/status".format(post["id"])).json()
        assert status["status"] == "failed"
        assert status["error_message"] == "out of disk"

        detail = client.get("/posts/{}".format(post["id"])).json()
        assert detail["status_data"]["errorKind"] == "render"
        assert detail["status_data"]["retryCount"] == 1

        renderer.error = None
        resp = client.post("/posts/{}/retry".format(post["id"]))
        assert resp.status_code == 200
        assert client.get("/posts/{}".format(post["id"])).json()["status"] == "completed"

    def test_retry_non_failed_is_409(self, client):
        post = _create(client)
        resp = client.post("/posts/{}/retry".format(post["id"]))
        assert resp.status_code == 409
        assert "idle" in resp.json()["detail"]

    def test_retry_all_failed(self, client, renderer):
        _create(client)
        _create(client)
        renderer.error = RenderError("nope")
        client.post("/publishing/start")
        renderer.error = None
        assert client.post("/publishing/retry-failed").json() == {"count": 2}
        progress = client.get("/publishing/progress").json()
        assert progress["completed"] == 2
        assert progress["failed"] == 0

    def test_remove_completed(self, client):
        _create(client)
        client.post("/publishing/start")
        assert client.post("/posts/remove-completed").json() == {"count": 1}
        assert client.get("/posts").json() == []


# ---------------------------------------------------------------------------
# Render plans
# ---------------------------------------------------------------------------


WORDS = [
    {"text": "one", "start": 10.0, "end": 10.5},
    {"text": "two", "start": 10.5, "end": 11.0},
    {"text": "three", "start": 11.0, "end": 11.5},
]


class TestRenderPlans:

    def test_assemble(self, client):
        resp = client.post(
            "/render-plans",
            json={
                "words": WORDS,
                "clip_start": 10.0,
                "clip_end": 11.5,
                "caption_style": {"animation": "bounce", "words_per_group": 2},
            },
        )
        assert resp.status_code == 200, resp.text
        plan = resp.json()
        assert plan["durationInFrames"] == 45
        assert plan["captionStyle"]["animation"] == "pop"
        assert [w["startFrame"] for w in plan["words"]] == [0, 15, 30]
        assert plan["audioStartFrame"] == 300

    def test_multicam(self, client):
        resp = client.post(
            "/render-plans",
            json={
                "words": WORDS,
                "clip_start": 10.0,
                "clip_end": 11.5,
                "format": "16:9",
                "multicam": {
                    "sources": [{"id": "a", "label": "Host"}, {"id": "b", "label": "Guest"}],
                    "timeline": [
                        {"start_frame": 0, "end_frame": 20, "video_source_id": "a"},
                        {"start_frame": 20, "end_frame": 45, "video_source_id": "b"},
                    ],
                    "layout_mode": "side-by-side",
                },
            },
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["multicam"]["layoutMode"] == "side-by-side"

    def test_gapped_timeline_is_400(self, client):
        resp = client.post(
            "/render-plans",
            json={
                "words": WORDS,
                "clip_start": 10.0,
                "clip_end": 11.5,
                "multicam": {
                    "sources": [{"id": "a"}],
                    "timeline": [{"start_frame": 5, "end_frame": 45, "video_source_id": "a"}],
                },
            },
        )
        assert resp.status_code == 400
        assert "gap" in resp.json()["detail"]

    def test_empty_window_is_400(self, client):
        resp = client.post(
            "/render-plans", json={"words": WORDS, "clip_start": 11.0, "clip_end": 10.0}
        )
        assert resp.status_code == 400

    def test_malformed_word_is_400(self, client):
        resp = client.post(
            "/render-plans",
            json={"words": [{"text": "x"}], "clip_start": 0.0, "clip_end": 1.0},
        )
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Health and OpenAPI
# ---------------------------------------------------------------------------


class TestHealthAndSchema:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_openapi_lists_endpoints(self, client):
        paths = client.get("/openapi.json").json()["paths"]
        for path in (
            "/posts",
            "/posts/{post_id}",
            "/posts/{post_id}/status",
            "/posts/{post_id}/validation",
            "/posts/{post_id}/retry",
            "/publishing/start",
            "/publishing/cancel",
            "/publishing/progress",
            "/render-plans",
            "/health",
        ):
            assert path in paths

    def test_endpoints_have_summaries(self, client):
        schema = client.get("/openapi.json").json()
        for path, methods in schema["paths"].items():
            for method, operation in methods.items():
                assert operation.get("summary"), "{} {} has no summary".format(method.upper(), path)

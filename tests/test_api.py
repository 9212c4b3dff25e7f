"""Tests for the Flask REST API.

Uses Flask test client with the fake player factory - no mpv needed.
"""

from conftest import VIDEO_ID, VIDEO_URL
from tubeloop.player.embed import PlayerState


class TestHealthEndpoint:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["player_mounted"] is True
        assert data["session_id"] is None
        assert "version" in data


class TestStatusEndpoint:
    def test_status_when_idle(self, client):
        data = client.get("/api/status").get_json()
        assert data["status"] == "idle"
        assert data["video_id"] is None

    def test_status_while_playing(self, client, player_factory):
        client.post("/api/source", json={"url": VIDEO_URL})
        player = player_factory.latest
        player.fire_ready()
        player.set_state(PlayerState.PLAYING)
        data = client.get("/api/status").get_json()
        assert data["status"] == "playing"
        assert data["video_id"] == VIDEO_ID

    def test_unhandled_error_is_json(self, client, app, monkeypatch):
        def boom():
            raise RuntimeError("status exploded")

        monkeypatch.setattr(app.supervisor, "status", boom)
        resp = client.get("/api/status")
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "status exploded"


class TestSourceEndpoints:
    def test_get_source_empty(self, client):
        data = client.get("/api/source").get_json()
        assert data == {"key": "youtubeUrl", "url": "", "source": None}

    def test_set_source_starts_player(self, client, app, player_factory):
        resp = client.post("/api/source", json={"url": f"  {VIDEO_URL}&end=30 "})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["source"]["video_id"] == VIDEO_ID
        assert data["source"]["end"] == 30
        assert app.store.get("youtubeUrl") == f"{VIDEO_URL}&end=30"
        assert len(player_factory.players) == 1

        source = client.get("/api/source").get_json()
        assert source["url"] == f"{VIDEO_URL}&end=30"
        assert source["source"]["is_valid"] is True

    def test_set_source_requires_url(self, client):
        resp = client.post("/api/source", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "url required"

    def test_set_source_rejects_invalid(self, client, app, player_factory):
        resp = client.post("/api/source", json={"url": "https://vimeo.com/1"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Not a valid YouTube URL"
        assert app.store.get("youtubeUrl") is None
        assert player_factory.players == []

    def test_set_source_rejects_playlist(self, client):
        resp = client.post("/api/source", json={"url": "https://www.youtube.com/playlist?list=PLx"})
        assert resp.status_code == 400
        assert "Playlists" in resp.get_json()["error"]

    def test_clear_source(self, client, player_factory):
        client.post("/api/source", json={"url": VIDEO_URL})
        resp = client.post("/api/source", json={"url": ""})
        assert resp.status_code == 200
        assert player_factory.latest.destroyed
        assert client.get("/api/status").get_json()["status"] == "idle"


class TestRetryEndpoint:
    def test_retry_without_video(self, client):
        resp = client.post("/api/retry")
        assert resp.status_code == 409

    def test_retry_recreates_player(self, client, player_factory):
        client.post("/api/source", json={"url": VIDEO_URL})
        player_factory.latest.fire_error(100)
        assert client.get("/api/status").get_json()["status"] == "error"
        resp = client.post("/api/retry")
        assert resp.status_code == 200
        assert len(player_factory.players) == 2
        data = client.get("/api/status").get_json()
        assert data["status"] == "loading"
        assert data["error"] == ""


class TestEmbedUrlEndpoint:
    def test_embed_url(self, client):
        resp = client.get("/api/embed-url", query_string={"url": f"{VIDEO_URL}&start=30&end=120"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["video_id"] == VIDEO_ID
        assert data["embed_url"].endswith("start=30&end=120")

    def test_embed_url_invalid(self, client):
        resp = client.get("/api/embed-url")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Please enter a YouTube URL"


class TestFullscreenEndpoints:
    def test_no_player(self, client):
        assert client.get("/api/fullscreen").get_json() == {"fullscreen": False, "available": False}
        assert client.post("/api/fullscreen/toggle").status_code == 409

    def test_toggle_waits_for_confirmation(self, client, app, player_factory):
        client.post("/api/source", json={"url": VIDEO_URL})
        player = player_factory.latest
        resp = client.post("/api/fullscreen/toggle")
        assert resp.status_code == 200
        assert resp.get_json()["fullscreen"] is False
        assert player.fullscreen_requests == [True]

        app.surface.on_fullscreen_change(True)
        assert client.get("/api/fullscreen").get_json()["fullscreen"] is True
        client.post("/api/fullscreen/toggle")
        assert player.fullscreen_requests == [True, False]


class TestEventsEndpoints:
    def test_recent_events(self, client):
        client.post("/api/source", json={"url": VIDEO_URL})
        events = client.get("/api/events/recent?limit=5").get_json()
        assert events
        assert events[0]["event_type"] == "playback"
        assert events[0]["content_id"] == VIDEO_ID

    def test_recent_events_filtered_by_session(self, client, app):
        client.post("/api/source", json={"url": VIDEO_URL})
        session_id = app.supervisor.session.session_id
        events = client.get(f"/api/events/recent?session_id={session_id}&type=playback").get_json()
        assert events
        assert all(e["session_id"] == session_id for e in events)
        assert client.get("/api/events/recent?session_id=999").get_json() == []

    def test_stream_starts_with_status_snapshot(self, client, app):
        client.post("/api/source", json={"url": VIDEO_URL})
        resp = client.get("/api/events", buffered=False)
        assert resp.mimetype == "text/event-stream"
        first = next(iter(resp.response)).decode()
        assert first.startswith("event: status\n")
        assert f'"video_id": "{VIDEO_ID}"' in first
        resp.close()
        assert app.event_bus.subscriber_count == 0

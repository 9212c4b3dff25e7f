"""Tests for the HTTP client, using httpx's mock transport."""

import json

import httpx
import pytest

from tubeloop.client import TubeloopAPIError, TubeloopClient


def make_client(handler):
    return TubeloopClient("kiosk.local", 5060, transport=httpx.MockTransport(handler))


class TestTubeloopClient:
    def test_base_url(self):
        client = TubeloopClient("kiosk.local", 5061)
        assert client.base_url == "http://kiosk.local:5061"
        client.close()

    def test_get_status(self):
        def handler(request):
            assert request.url.path == "/api/status"
            return httpx.Response(200, json={"status": "playing"})

        with make_client(handler) as client:
            assert client.get_status() == {"status": "playing"}

    def test_set_source_posts_json(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        with make_client(handler) as client:
            client.set_source("https://youtu.be/dQw4w9WgXcQ")
        assert seen == {"method": "POST", "body": {"url": "https://youtu.be/dQw4w9WgXcQ"}}

    def test_embed_url_query(self):
        def handler(request):
            assert request.url.params["url"] == "https://youtu.be/dQw4w9WgXcQ"
            return httpx.Response(200, json={"video_id": "dQw4w9WgXcQ"})

        with make_client(handler) as client:
            assert client.embed_url("https://youtu.be/dQw4w9WgXcQ")["video_id"] == "dQw4w9WgXcQ"

    def test_recent_events_filters(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json=[])

        with make_client(handler) as client:
            assert client.recent_events(5, session_id=3, event_type="retry") == []
        assert seen == {"limit": "5", "session_id": "3", "type": "retry"}

    def test_server_error_message(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Not a valid YouTube URL"})

        with make_client(handler) as client:
            with pytest.raises(TubeloopAPIError) as exc:
                client.set_source("https://vimeo.com/1")
        assert str(exc.value) == "Not a valid YouTube URL"
        assert exc.value.status_code == 400

    def test_error_without_json_body(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with make_client(handler) as client:
            with pytest.raises(TubeloopAPIError) as exc:
                client.retry()
        assert str(exc.value) == "HTTP 502"

    def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(TubeloopAPIError, match="Cannot connect"):
                client.get_health()

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with make_client(handler) as client:
            with pytest.raises(TubeloopAPIError, match="timed out"):
                client.toggle_fullscreen()

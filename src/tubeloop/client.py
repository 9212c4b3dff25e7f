"""HTTP client for the tubeloop server.

Used by the `tubeloop` command to read status and push a new URL.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class TubeloopAPIError(Exception):
    """Error communicating with the tubeloop server."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TubeloopClient:
    """HTTP client for the tubeloop REST API.

    Usage:
        client = TubeloopClient("kiosk.local", 5060)
        client.set_source("https://youtu.be/dQw4w9WgXcQ")
        client.get_status()["status"]
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 5060,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.ConnectError:
            raise TubeloopAPIError(f"Cannot connect to {self.base_url}")
        except httpx.TimeoutException:
            raise TubeloopAPIError("Request timed out")
        except httpx.HTTPStatusError as e:
            raise TubeloopAPIError(_error_message(e.response), e.response.status_code)

    def _get(self, path: str, params: dict | None = None) -> Any:
        return self._request("GET", path, params=params)

    def _post(self, path: str, data: dict | None = None) -> Any:
        return self._request("POST", path, json=data)

    # --- Status ---

    def get_health(self) -> dict:
        return self._get("/api/health")

    def get_status(self) -> dict:
        return self._get("/api/status")

    # --- Source ---

    def get_source(self) -> dict:
        return self._get("/api/source")

    def set_source(self, url: str) -> dict:
        return self._post("/api/source", {"url": url})

    def clear_source(self) -> dict:
        return self._post("/api/source", {"url": ""})

    def embed_url(self, url: str) -> dict:
        return self._get("/api/embed-url", {"url": url})

    # --- Control ---

    def retry(self) -> dict:
        return self._post("/api/retry")

    def get_fullscreen(self) -> dict:
        return self._get("/api/fullscreen")

    def toggle_fullscreen(self) -> dict:
        return self._post("/api/fullscreen/toggle")

    def recent_events(
        self, limit: int = 20, session_id: int | None = None, event_type: str | None = None,
    ) -> list[dict]:
        params = {"limit": limit}
        if session_id is not None:
            params["session_id"] = session_id
        if event_type:
            params["type"] = event_type
        return self._get("/api/events/recent", params)


def _error_message(response: httpx.Response) -> str:
    """Prefer the server's {"error": ...} body over the bare status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"

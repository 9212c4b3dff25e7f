"""Flask REST API for tubeloop.

Exposes supervisor status, the source URL setting, manual retry, the
fullscreen toggle and the event stream. The settings page, the CLI client
and anything else on the LAN talk to this.
"""

import json
import logging
import os
import queue

from flask import Flask, Response, jsonify, request

from tubeloop.__about__ import __version__
from tubeloop.config import Config
from tubeloop.player.embed import PlayerFactory
from tubeloop.player.mpv import mpv_player_factory
from tubeloop.player.scheduler import Scheduler, ThreadedScheduler
from tubeloop.player.session import PlaybackSupervisor
from tubeloop.player.source import build_embed_url, parse, validate_url
from tubeloop.player.surface import VideoSurface
from tubeloop.server.database import Database
from tubeloop.server.events import EventBus
from tubeloop.server.settings_store import SettingsStore

logger = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    player_factory: PlayerFactory | None = None,
    scheduler: Scheduler | None = None,
    start_player: bool = True,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Full configuration. Uses defaults if None.
        player_factory: Builds players for the supervisor. Defaults to mpv.
        scheduler: Event loop for the supervisor. A ThreadedScheduler is
            created and started if None.
        start_player: Mount the supervisor so it starts playing the stored URL.
    """
    if config is None:
        config = Config()
    server_config = config.server

    os.makedirs(server_config.data_dir, exist_ok=True)

    app = Flask(__name__)
    app.config["TUBELOOP"] = config

    db = Database(server_config.db_file)
    store = SettingsStore(db)
    event_bus = EventBus(db)
    surface = VideoSurface(fullscreen_on_start=server_config.start_fullscreen)

    if scheduler is None:
        scheduler = ThreadedScheduler()
        scheduler.start()
    if player_factory is None:
        player_factory = mpv_player_factory(server_config)

    supervisor = PlaybackSupervisor(
        store,
        player_factory,
        scheduler,
        config=config.playback,
        surface=surface,
        event_bus=event_bus,
        source_key=server_config.source_key,
    )
    if start_player:
        supervisor.mount()

    source_key = server_config.source_key

    @app.teardown_appcontext
    def close_db(exc):
        db.close()

    @app.errorhandler(Exception)
    def handle_exception(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error: %s", e)
        return jsonify({"error": str(e)}), 500

    app.db = db
    app.store = store
    app.event_bus = event_bus
    app.surface = surface
    app.scheduler = scheduler
    app.supervisor = supervisor

    # --- Status ---

    @app.route("/api/health")
    def health():
        session = supervisor.session
        return jsonify({
            "status": "ok",
            "version": __version__,
            "player_mounted": supervisor.is_mounted,
            "scheduler_running": getattr(scheduler, "is_running", True),
            "session_id": session.session_id if session else None,
            "pending_timers": scheduler.pending_timers,
        })

    @app.route("/api/status")
    def status():
        return jsonify(supervisor.status().to_dict())

    # --- Source ---

    @app.route("/api/source", methods=["GET"])
    def get_source():
        url = store.get(source_key) or ""
        return jsonify({
            "key": source_key,
            "url": url,
            "source": parse(url).to_dict() if url else None,
        })

    @app.route("/api/source", methods=["POST"])
    def set_source():
        data = request.get_json(silent=True) or {}
        if "url" not in data:
            return jsonify({"error": "url required"}), 400
        url = data["url"]
        if url is None or (isinstance(url, str) and not url.strip()):
            store.set(source_key, "")
            return jsonify({"ok": True, "source": None})

        is_valid, error = validate_url(url)
        if not is_valid:
            return jsonify({"error": error}), 400

        url = url.strip()
        store.set(source_key, url)
        return jsonify({"ok": True, "source": parse(url).to_dict()})

    @app.route("/api/retry", methods=["POST"])
    def retry():
        if supervisor.session is None:
            return jsonify({"error": "no video to retry"}), 409
        supervisor.retry()
        return jsonify({"ok": True})

    @app.route("/api/embed-url")
    def embed_url():
        url = request.args.get("url", "")
        is_valid, error = validate_url(url)
        if not is_valid:
            return jsonify({"error": error}), 400
        source = parse(url)
        return jsonify({
            "video_id": source.content_id,
            "embed_url": build_embed_url(source.content_id, source.raw_url),
        })

    # --- Fullscreen ---

    @app.route("/api/fullscreen")
    def fullscreen():
        return jsonify({"fullscreen": surface.is_fullscreen, "available": surface.attached})

    @app.route("/api/fullscreen/toggle", methods=["POST"])
    def fullscreen_toggle():
        if not supervisor.toggle_fullscreen():
            return jsonify({"error": "no player attached"}), 409
        # State flips when the player confirms, not here
        return jsonify({"ok": True, "fullscreen": surface.is_fullscreen})

    # --- Events ---

    @app.route("/api/events")
    def events_stream():
        """SSE stream of real-time events."""
        snapshot = supervisor.status().to_dict()

        def generate():
            q = event_bus.subscribe()
            try:
                # New clients draw from this before the first event arrives
                yield f"event: status\ndata: {json.dumps(snapshot)}\n\n"
                while True:
                    try:
                        event = q.get(timeout=30)
                    except queue.Empty:
                        yield ": heartbeat\n\n"
                        continue
                    yield f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"
            finally:
                event_bus.unsubscribe(q)

        return Response(generate(), mimetype="text/event-stream")

    @app.route("/api/events/recent")
    def events_recent():
        limit = request.args.get("limit", 20, type=int)
        session_id = request.args.get("session_id", type=int)
        event_type = request.args.get("type")
        return jsonify(event_bus.recent(limit, session_id=session_id, event_type=event_type))

    return app

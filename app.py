"""
Provides an application factory that constructs and configures the Flask
instance serving the statistics API.
"""

import atexit
import logging
import threading
from typing import Dict, Optional

try:
    from flask import Flask, Response, jsonify, request
except ImportError as exc:
    raise RuntimeError(
        "Flask is required to run the statistics API. "
        "Install with: pip install Flask"
    ) from exc

from services.settings_store import MASKED_KEY


def create_app(test_config: Optional[Dict] = None) -> "Flask":
    """
    Create and configure the statistics Flask application.
    """
    app = Flask(__name__)

    app.config.setdefault("DEBUG", False)
    app.config.setdefault("PORT", 2929)
    app.config.setdefault("DATABASE_URL", "sqlite:///jellystats.db")
    app.config.setdefault("ENCRYPTION_KEY_PATH", "secret.key")
    app.config.setdefault("DATA_DATABASE_URL", "sqlite:///jellystats_data.db")

    if test_config:
        app.config.update(test_config)
        if app.config.get("DEBUG", False):
            if "DATABASE_URL" not in test_config:
                app.config["DATABASE_URL"] = "sqlite:///:memory:"
            if "ENCRYPTION_KEY_PATH" not in test_config:
                app.config["ENCRYPTION_KEY_PATH"] = ":memory:"
            if "DATA_DATABASE_URL" not in test_config:
                app.config["DATA_DATABASE_URL"] = "sqlite:///:memory:"

    from services.settings_store import SettingsService
    svc = SettingsService(
        database_url=app.config["DATABASE_URL"],
        encryption_key_path=app.config["ENCRYPTION_KEY_PATH"],
    )

    from services.repository import Repository
    repo = Repository(
        database_url=app.config["DATA_DATABASE_URL"]
    )

    from services.jellyfin import create_client
    jf = create_client(svc)

    from services.jellyfin_catalog import JellyfinCatalogProvider
    provider = app.config.get("CATALOG_PROVIDER") or JellyfinCatalogProvider(jf)

    from services.stats_service import StatsService
    stats = StatsService(
        catalog_provider=provider,
        repository=repo,
        settings_service=svc,
        episode_counter=app.config.get("EPISODE_COUNTER"),
    )

    from services.stats_scheduler import StatsScheduler
    scheduler = StatsScheduler(
        stats_service=stats,
        interval_seconds=svc.get().get("stats_interval") or 86400,
    )

    if not app.config.get("DEBUG"):
        scheduler.start()

    def cleanup():
        """
        Cleanup function called when app shuts down.
        """
        scheduler.stop()
        svc.engine.dispose()
        repo.engine.dispose()

    atexit.register(cleanup)

    @app.get("/api/settings")
    def get_settings() -> Response:
        settings = svc.get()
        if settings.get("jf_api_key"):
            settings["jf_api_key"] = MASKED_KEY
        return jsonify(settings), 200

    @app.put("/api/settings")
    def update_settings() -> Response:
        payload = request.get_json(silent=True) or {}
        updated = svc.update(payload)
        if "stats_interval" in payload:
            scheduler.interval_seconds = int(updated.get("stats_interval") or scheduler.interval_seconds)
        if updated.get("jf_api_key"):
            updated["jf_api_key"] = MASKED_KEY
        return jsonify(updated), 200

    @app.get("/api/test-connection")
    def test_connection() -> Response:
        """
        Test Jellyfin connectivity using persisted settings.
        """
        result = jf.validate_connection()
        if result.get("ok"):
            return jsonify({
                "ok": True,
                "status": result.get("status"),
                "message": "Connection successful."
            }), 200
        return jsonify({
            "ok": False,
            "status": result.get("status"),
            "message": result.get("message"),
        }), 200

    @app.get("/api/statistics")
    def get_statistics() -> Response:
        return jsonify(repo.get_results()), 200

    @app.get("/api/statistics/users")
    def list_statistics_users() -> Response:
        return jsonify(repo.list_user_names()), 200

    @app.get("/api/statistics/users/<name>")
    def get_user_statistics(name: str) -> Response:
        stat = repo.get_user_stats(name)
        if stat is None:
            return jsonify({"ok": False, "message": f"No statistics for {name}"}), 404
        return jsonify(stat), 200

    @app.get("/api/statistics/show-progress/<name>")
    def get_show_progress(name: str) -> Response:
        return jsonify(repo.get_show_progress(name)), 200

    @app.get("/api/statistics/task")
    def get_latest_task() -> Response:
        return jsonify(repo.get_latest_task()), 200

    @app.post("/api/statistics/run")
    def run_statistics() -> Response:
        """
        Start a run. ``{"type": "tv"}`` refreshes show progress only;
        ``{"wait": true}`` blocks until the run finishes.
        """
        payload = request.get_json(silent=True) or {}
        run_type = payload.get("type") or "full"
        if run_type not in ("full", "tv"):
            return jsonify({"ok": False, "message": f"Unknown run type: {run_type}"}), 400

        target = stats.refresh_show_progress if run_type == "tv" else stats.run

        if payload.get("wait"):
            result = target(execution_type="manual")
            return jsonify(result.to_dict()), 200

        def run_in_background():
            try:
                target(execution_type="manual")
            except Exception:
                logging.exception("[ERROR] Manual statistics run failed")

        threading.Thread(target=run_in_background, daemon=True).start()
        return jsonify({"ok": True, "type": run_type, "message": "Run started."}), 202

    return app

"""
FastAPI server for the reminder API. Run with run_api_server(app) in a background thread.
Central endpoints: GET /api/health, GET /api/tasks. Engine routes are mounted
from prayer_reminder.reminders.api (get_router(engine)) under /api/reminders/.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI

from prayer_reminder import __version__
from prayer_reminder.reminders.api import get_router

logger = logging.getLogger(__name__)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def create_app(reminder_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given app's engine and task manager."""
    app = FastAPI(title="Prayer Reminder API", description="Prayer schedule, reminder settings and notifications")

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__, "running": reminder_app.engine.running}

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List active in-memory timers."""
        task_manager = getattr(reminder_app, "task_manager", None)
        timers = task_manager.get_active_timers() if task_manager is not None else []
        return {
            "active_timers": [
                {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
                for t in timers
            ]
        }

    router = get_router(reminder_app.engine)
    if router is not None:
        app.include_router(router, prefix="/api/reminders")

    return app


def run_api_server(reminder_app: Any) -> Optional[threading.Thread]:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = reminder_app.config.data.get("api") or {}
    enabled = api_config.get("enabled", False)
    if not enabled:
        logger.info("API server not started: set api.enabled to true in your config file to enable.")
        return None
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(reminder_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
    return thread

"""
Health check HTTP server for Kubernetes liveness and readiness checks.

Provides endpoints for monitoring the health and readiness of the Polity engine.
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from polity.kernel.logging import get_logger

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - will be set by initialize_health_server()
_db_path: Path | None = None
_polity_instance: Any = None  # Polity instance for governance stats


def initialize_health_server(db_path: str | Path, polity_instance: Any = None) -> None:
    """
    Initialize the health server with the database path and a Polity instance.

    Args:
        db_path: Path to SQLite database
        polity_instance: Optional Polity instance for governance stats
    """
    global _db_path, _polity_instance
    _db_path = Path(db_path)
    _polity_instance = polity_instance
    logger.info("Health server initialized", db_path=str(_db_path))


def _not_ready(reason: str, **details: Any) -> tuple[Any, int]:
    return jsonify({"status": "not_ready", "reason": reason, **details}), 503


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[dict[str, Any], int]:
    """
    Liveness check - confirms if the process is running.

    Returns:
        JSON response with status and 200 OK
    """
    return jsonify({"status": "alive", "service": "polity"}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[dict[str, Any], int]:
    """
    Readiness check - confirms the event log can be queried.

    Returns:
        JSON response with status and 200 OK if ready, 503 if not ready
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return _not_ready("database_path_not_initialized")

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return _not_ready("database_file_not_found", db_path=str(_db_path))

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.OperationalError as e:
        logger.error("Readiness check failed: DB operational error", error=str(e))
        return _not_ready("database_operational_error", error=str(e))

    logger.debug("Readiness check passed", event_count=event_count)
    return (
        jsonify({"status": "ready", "database": "accessible", "event_count": event_count}),
        200,
    )


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[dict[str, Any], int]:
    """
    Detailed health check - database size plus governance stats if available.

    Returns:
        JSON response with detailed health information
    """
    from polity import __version__

    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": "polity",
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            conn = sqlite3.connect(str(_db_path), timeout=1.0)
            try:
                event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            finally:
                conn.close()

            health_data["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "event_count": event_count,
                "size_mb": round((page_count * page_size) / (1024 * 1024), 2),
            }

        except sqlite3.Error as e:
            logger.error("Database health check failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    if _polity_instance is not None:
        try:
            health_data["governance"] = _polity_instance.stats()
        except Exception as e:
            logger.warning("Could not compute governance stats", error=str(e))
            health_data["governance"] = {"status": "unavailable", "error": str(e)}

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    # For local checks: python -m polity.health_server
    from polity.polity import Polity

    db = Path(".polity.db")
    initialize_health_server(db, Polity(db))
    run_health_server(port=8080, debug=True)

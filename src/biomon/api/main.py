"""
BIOMON API Server Entry Point.

Run with:
    biomon serve

Or with uvicorn directly:
    uvicorn biomon.api.main:get_app --factory --host 0.0.0.0 --port 3050
"""

import logging
import os

import uvicorn

from ..config import ServerConfig, load_config
from .server import create_app

logger = logging.getLogger(__name__)


def get_app():
    """Factory function for creating the FastAPI app from BIOMON_* settings."""
    config = load_config()
    return create_app(
        sessions_dir=config["sessions_dir"],
        tables_path=config["tables_path"],
        cors_origins=config["cors_origins"],
        autosave_delay=config["autosave_delay"],
    )


def run(config: ServerConfig, reload: bool = False, debug: bool = False) -> None:
    """Serve BIOMON with uvicorn using the given settings."""
    logger.info(
        f"Starting BIOMON on {config['host']}:{config['port']} "
        f"(sessions: {config['sessions_dir']})"
    )
    log_level = "debug" if debug else "info"

    if reload:
        # The reloader imports get_app itself, so settings travel through the environment
        os.environ["BIOMON_SESSIONS_DIR"] = str(config["sessions_dir"])
        os.environ["BIOMON_CORS_ORIGIN"] = ",".join(config["cors_origins"])
        os.environ["BIOMON_AUTOSAVE_DELAY"] = str(config["autosave_delay"])
        if config["tables_path"]:
            os.environ["BIOMON_TABLES_PATH"] = str(config["tables_path"])
        uvicorn.run(
            "biomon.api.main:get_app",
            factory=True,
            host=config["host"],
            port=config["port"],
            reload=True,
            log_level=log_level,
        )
        return

    app = create_app(
        sessions_dir=config["sessions_dir"],
        tables_path=config["tables_path"],
        cors_origins=config["cors_origins"],
        autosave_delay=config["autosave_delay"],
    )
    uvicorn.run(app, host=config["host"], port=config["port"], log_level=log_level)

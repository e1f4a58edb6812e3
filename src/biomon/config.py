"""
Server configuration.

Defaults are overridden by BIOMON_* environment variables, and the CLI
flags override both.
"""

import logging
import os
from typing import Mapping, TypedDict

logger = logging.getLogger(__name__)


class ServerConfig(TypedDict, total=False):
    """Server configuration."""
    host: str
    port: int
    cors_origins: list[str]  # Allowed browser origins for the GM/player pages
    sessions_dir: str  # Autosave + campaign saves
    tables_path: str | None  # Custom response tables (bundled if None)
    autosave_delay: float  # Seconds of quiet before an autosave


DEFAULT_CONFIG: ServerConfig = {
    "host": "0.0.0.0",
    "port": 3050,
    "cors_origins": ["http://localhost:3051"],
    "sessions_dir": "sessions",
    "tables_path": None,
    "autosave_delay": 1.0,
}


def _env_number(environ: Mapping[str, str], name: str, cast, default):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def load_config(environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Build config from defaults plus environment overrides."""
    env = os.environ if environ is None else environ
    config = DEFAULT_CONFIG.copy()

    if env.get("BIOMON_HOST"):
        config["host"] = env["BIOMON_HOST"]
    config["port"] = _env_number(env, "BIOMON_PORT", int, config["port"])

    origins = env.get("BIOMON_CORS_ORIGIN")
    if origins:
        config["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

    if env.get("BIOMON_SESSIONS_DIR"):
        config["sessions_dir"] = env["BIOMON_SESSIONS_DIR"]
    if env.get("BIOMON_TABLES_PATH"):
        config["tables_path"] = env["BIOMON_TABLES_PATH"]

    delay = _env_number(env, "BIOMON_AUTOSAVE_DELAY", float, config["autosave_delay"])
    config["autosave_delay"] = max(0.0, delay)
    return config

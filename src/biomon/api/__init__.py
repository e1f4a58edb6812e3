"""
BIOMON API Server.

FastAPI-based websocket/REST transport around a SessionManager.
"""

from .server import BiomonAPI, ConnectionManager, create_app

__all__ = [
    "BiomonAPI",
    "ConnectionManager",
    "create_app",
]

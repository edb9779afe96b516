from __future__ import annotations
"""
Invigilator API

FastAPI server for room requests from the backend and session monitoring.
"""

from invigilator.api.server import app, create_app, start_server

__all__ = [
    "app",
    "create_app",
    "start_server",
]

"""
Local API for the order sync session.

This package provides a single FastAPI application that exposes:
- Cached orders, resolvable by any identifier
- Notifications and their read state
- Push connection state and a forced REST refresh
"""

from api.main import app

__all__ = ["app"]

"""Web dashboard for Counterlink nodes.

Provides a local web interface and JSON API over the session bridge using
FastAPI and HTMX.
"""

from .app import EventRecorder, create_app

__all__ = ["EventRecorder", "create_app"]

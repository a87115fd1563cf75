"""FastAPI web application for the release pipeline.

This module provides the HTTP API: trigger webhooks that submit release
builds, and read access to build runs.

All business logic is delegated to core modules in release_pipeline/.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]

"""Router modules for FastAPI web API."""

from web.routers import artifacts, config, health, runs

__all__ = ["artifacts", "config", "health", "runs"]

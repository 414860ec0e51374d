"""HTTP API for the video generation service."""

from .server import app, create_app

__all__ = ["app", "create_app"]

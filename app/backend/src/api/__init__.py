"""Public API routers exposed by the FastAPI application."""

from . import batch_uploads, health

__all__ = ["batch_uploads", "health"]

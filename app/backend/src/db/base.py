from __future__ import annotations

from ..models.base import Base

# Single declarative base shared by models and table management scripts.

__all__ = ["Base"]

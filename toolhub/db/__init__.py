"""Database package — async SQLAlchemy engine, models, and repositories."""
from .engine import get_engine, dispose_engine
from .base import Base

__all__ = ["get_engine", "dispose_engine", "Base"]

"""Persistence layer."""
from .database import SQLiteRepository

__all__ = ["SQLiteRepository"]

"""Persistent store of classified NLU training sentences."""

from .config import AppConfig
from .errors import InvalidQuery, StoreFailure
from .service import SentenceAdminService
from .storage import SQLiteSentenceStore

__all__ = ["AppConfig", "InvalidQuery", "SQLiteSentenceStore", "SentenceAdminService", "StoreFailure"]

"""Persistence store: abstract interface and the SQLAlchemy implementation."""

from gitrouter.store.base import BaseStore, StoreError
from gitrouter.store.sql_store import SQLStore

__all__ = ["BaseStore", "SQLStore", "StoreError"]

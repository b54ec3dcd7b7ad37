"""
Database Package
ORM models and session management.
"""

from .models import Base, UploadSession, ImportRun, Product, Asset
from .session import create_db_engine, create_session_factory, init_db, session_scope

__all__ = [
    "Base",
    "UploadSession",
    "ImportRun",
    "Product",
    "Asset",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]

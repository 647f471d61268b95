"""
Database configuration; models import their declarative Base from here.
"""

from app.core.database_manager import Base as _Base
from app.core.database_manager import db_manager

Base = _Base

__all__ = ["Base", "db_manager"]

"""
SQLAlchemy declarative base for models.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all quote aggregate models."""
    pass

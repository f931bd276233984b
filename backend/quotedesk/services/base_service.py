"""
Base service class.
Services hold a session, build their repositories and own the commit.
"""

from abc import ABC


class BaseService(ABC):
    """Base class for the quote services."""
    pass

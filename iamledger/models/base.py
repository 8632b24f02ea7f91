"""Shared SQLAlchemy handle for the model modules."""
from .. import db

__all__ = ['db']

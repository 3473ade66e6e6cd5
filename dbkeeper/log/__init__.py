"""
Logging package for dbkeeper.
"""
from .setup import setup_logging

__all__ = ["setup_logging"]

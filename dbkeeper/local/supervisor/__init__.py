"""
The Supervisor package.
Runs the database engine's lifecycle.

This package contains the central Supervisor class and its helper modules,
which together handle bootstrapping the data directory, starting and stopping
the engine, publishing it for discovery, and scheduling backups.
"""
from .supervisor import Supervisor

__all__ = ['Supervisor']

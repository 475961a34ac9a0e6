"""Models package."""

from .connection import Connection

"""Lula - compliance validation against live infrastructure state."""

__version__ = "0.9.0"

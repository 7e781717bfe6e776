"""Dependency-aware state keeper for a folder of mod archives."""

__version__ = "0.1.0"

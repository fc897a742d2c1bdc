"""Relational persistence for sync configuration documents."""

__version__ = "0.1.0"

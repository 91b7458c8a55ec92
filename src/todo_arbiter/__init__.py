"""Shared todo backlog with exclusive claims and a tracked lifecycle."""

__version__ = "0.1.0"

"""Persistent codebase intelligence: symbol store, search, git data and command line."""

__version__ = "0.1.0"
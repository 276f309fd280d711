"""Kogno jobs client: submit background jobs and track them to completion."""

__version__ = "0.1.0"

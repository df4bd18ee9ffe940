"""Shared helpers: logging and transport."""

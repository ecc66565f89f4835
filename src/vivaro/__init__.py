"""Vivaro: local client-relationship manager backed by a folder-per-client JSON store."""

__version__ = "0.4.0"

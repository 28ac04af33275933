"""Shared helpers."""

from .hash import hash_file

__all__ = ["hash_file"]

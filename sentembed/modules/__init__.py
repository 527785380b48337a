"""Shared building blocks used across the engine services."""

from . import concurrent_dict  # re-export module

__all__ = ["concurrent_dict"]

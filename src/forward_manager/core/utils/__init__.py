"""Utility functions and helpers."""

from forward_manager.core.utils.utils import format_bytes, format_endpoint

__all__ = ["format_bytes", "format_endpoint"]

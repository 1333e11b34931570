"""Utility modules for chunk backup."""

from .formatters import format_file_size, format_duration, format_date, split_args

__all__ = ["format_file_size", "format_duration", "format_date", "split_args"]

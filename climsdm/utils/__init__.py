"""
Shared helpers: logging setup and output writers.
"""

from .logging_utils import setup_logging

__all__ = [
    'setup_logging',
]

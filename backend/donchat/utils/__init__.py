"""Utility modules for the application."""
from donchat.utils.logger import configure_logging, get_logger, safe_repr

__all__ = [
    'configure_logging',
    'get_logger',
    'safe_repr',
]

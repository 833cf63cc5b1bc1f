"""
Utilities for the anti-bootloop module manager.
"""
from .analytics import log_event, get_summary, clear_analytics
from .logger import setup_logging

__all__ = ["log_event", "get_summary", "clear_analytics", "setup_logging"]

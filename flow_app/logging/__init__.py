"""
Logging configuration and utilities for the options flow pipeline.
"""
from .config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]

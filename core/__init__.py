"""
Core utilities and configuration for the PII mirror.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engines and session factories for source and sink stores
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import create_engine_for, create_session_factory
    from core.exceptions import CheckpointError, SinkWriteError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "setup_logging",
    "create_engine_for",
    "create_session_factory",
    # Exceptions
    "SyncException",
    "FeedError",
    "FeedConnectionError",
    "AnonymizationError",
    "LoadError",
    "SinkWriteError",
    "UpsertError",
    "CheckpointError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]

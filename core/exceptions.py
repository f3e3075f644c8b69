"""
Custom exceptions for the mirror pipeline with structured error context.

This module provides the exception hierarchy used by the change feed
consumer, the batch flusher, the checkpoint stores and the catch-up
syncer. Each exception includes context information for debugging and
for the structured log lines emitted when a cycle aborts.

Exception Hierarchy:
    SyncException (base)
    ├── FeedError
    │   └── FeedConnectionError
    ├── AnonymizationError
    ├── LoadError
    │   ├── SinkWriteError
    │   └── UpsertError
    ├── CheckpointError
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all mirror-related errors.
    
    Attributes:
        message: Human-readable error message
        context: Additional context information (stream, token, batch size, etc.)
        original_exception: The original exception that was caught (if any)
    """
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)
        
        self.context["error_timestamp"] = self.timestamp.isoformat()
        
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception
    
    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"
        
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"
        
        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"
        
        return base_msg
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that a later attempt (next tick or next process start)
    is expected to get past:
    - Feed or sink unreachable
    - Connection reset mid-statement
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that will fail the same way every time:
    - Invalid configuration
    - Schema mismatch between pipeline and store
    """
    pass


# ============================================================================
# Feed Errors
# ============================================================================

class FeedError(SyncException):
    """
    Exception raised when reading the source change feed fails.
    
    Context should include:
        - position: Last position token handed to the queue
        - operation: "tail", "fetch"
    """
    pass


class FeedConnectionError(RetryableError, FeedError):
    """Source store unreachable while tailing the feed."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class AnonymizationError(NonRetryableError, ValueError):
    """
    Exception raised when a record cannot be anonymized.
    
    Context should include:
        - record_id: Identity of the offending record
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncException):
    """Base exception for sink write failures."""
    pass


class SinkWriteError(LoadError):
    """
    Exception raised when a bulk insert into the sink fails for any reason
    other than a uniqueness conflict on identity.
    
    Context should include:
        - table_name: Sink table
        - batch_size: Number of records in the failed statement
        - operation: "INSERT", "DELETE"
    """
    pass


class UpsertError(LoadError):
    """
    Exception raised when an upsert into the sink fails.
    
    Context should include:
        - table_name: Sink table
        - batch_size: Number of records in the failed statement
        - first_id / last_id: Identity range of the group
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(SyncException):
    """
    Exception raised when checkpoint persistence fails.
    
    Context should include:
        - backend: "file" or "database"
        - location: Path or stream name
        - checkpoint_value: The token that failed to persist
        - operation: "load", "save"
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Invalid or inconsistent settings."""
    pass

"""
Error handling framework for the docsync replication server.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error responses for the HTTP layer
"""

from typing import Optional, Dict, Any, List, Type
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from contextlib import contextmanager

from .logging import get_logger


logger = get_logger("docsync.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    SYSTEM = "system"
    DATABASE = "database"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    USER_INPUT = "user_input"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class DocSyncError(Exception):
    """Base exception for all docsync errors."""

    code: str = "DOCSYNC_ERROR"
    default_message: str = "An error occurred in docsync"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def get_retry_after(self) -> Optional[int]:
        """Get retry delay in seconds."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "retry_after": self.get_retry_after(),
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "request_id": self.context.request_id,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(DocSyncError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify DOCSYNC_* environment variables",
        ]


# Database Errors

class DatabaseError(DocSyncError):
    """Database-related errors."""
    code = "DATABASE_ERROR"
    default_message = "Database error occurred"
    category = ErrorCategory.DATABASE


class StoreError(DatabaseError):
    """The document store failed; the whole call may be retried as-is."""
    code = "STORE_ERROR"
    default_message = "Document store operation failed"
    is_retryable = True

    def get_retry_after(self) -> Optional[int]:
        return 1

    def get_suggestions(self) -> List[str]:
        return [
            "Retry the request with the same checkpoint or change rows",
        ]


# Validation Errors

class ValidationError(DocSyncError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}"
        ]


class MalformedCheckpointError(ValidationError):
    """A checkpoint token or cursor parameter could not be parsed."""
    code = "MALFORMED_CHECKPOINT"
    category = ErrorCategory.USER_INPUT


class MalformedChangeRowError(ValidationError):
    """A pushed change row lacks a usable document id or state."""
    code = "MALFORMED_CHANGE_ROW"
    category = ErrorCategory.USER_INPUT


@contextmanager
def error_context(
    component: str,
    operation: str,
    wrap: Type[DocSyncError] = DocSyncError,
    catch: tuple = (Exception,),
    **metadata
):
    """
    Attach component/operation context to errors raised in the block.

    DocSyncErrors get their context filled in and are re-raised. Other
    exceptions listed in ``catch`` are wrapped in ``wrap``.

    Args:
        component: Component name
        operation: Operation name
        wrap: DocSyncError subclass used to wrap foreign exceptions
        catch: Exception types to wrap
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except DocSyncError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        raise
    except catch as e:
        wrapped = wrap(message=f"{operation} failed: {e}", context=context, cause=e)
        logger.error(
            "unexpected_error_in_context",
            component=component,
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise wrapped from e


__all__ = [
    'DocSyncError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'DatabaseError',
    'StoreError',
    'ValidationError',
    'MalformedCheckpointError',
    'MalformedChangeRowError',
    'error_context',
]

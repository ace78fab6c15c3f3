"""
Error handling framework for lexisync.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Retryability classification used by the sync and live-update layers
- Structured error responses
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import traceback

from .logging import get_logger


logger = get_logger("lexisync.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    SYNC = "sync"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


class LexisyncError(Exception):
    """Base exception for all lexisync errors."""

    code: str = "LEXISYNC_ERROR"
    default_message: str = "An error occurred in lexisync"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(LexisyncError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify LEXISYNC_* environment variables",
        ]


# Network Errors

class NetworkError(LexisyncError):
    """Transient network or server errors."""
    code = "NETWORK_ERROR"
    default_message = "Network error occurred"
    category = ErrorCategory.NETWORK
    is_retryable = True


class HTTPStatusError(NetworkError):
    """Non-success HTTP response."""
    code = "HTTP_STATUS_ERROR"

    def __init__(self, status: int, body: str = "", **kwargs):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}" if body else f"HTTP {status}", **kwargs)
        # 5xx and 429 are transient
        self.is_retryable = status >= 500 or status == 429


# Authentication Errors

class AuthenticationError(LexisyncError):
    """Authentication errors. Permanent for the current session."""
    code = "AUTH_ERROR"
    default_message = "Authentication failed"
    category = ErrorCategory.AUTHENTICATION
    severity = ErrorSeverity.WARNING

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return ["Run `lexisync login` to re-authenticate"]


# Validation Errors

class DocumentValidationError(LexisyncError):
    """A translation document failed validation."""
    code = "DOCUMENT_VALIDATION_ERROR"
    default_message = "Invalid translation document"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING


# Storage Errors

class StorageError(LexisyncError):
    """Local persistence errors."""
    code = "STORAGE_ERROR"
    default_message = "Failed to read or write local translation files"
    category = ErrorCategory.STORAGE


# Sync Errors

class SyncError(LexisyncError):
    """Synchronization errors."""
    code = "SYNC_ERROR"
    default_message = "Synchronization failed"
    category = ErrorCategory.SYNC


class MergeConflictError(SyncError):
    """Raised when a merge with undecided conflicts is applied."""
    code = "MERGE_CONFLICT"
    default_message = "Merge has unresolved conflicts"
    severity = ErrorSeverity.WARNING

    def __init__(self, keys: List[str], **kwargs):
        self.keys = keys
        super().__init__(f"{len(keys)} unresolved conflict(s): {', '.join(keys[:5])}", **kwargs)


def error_for_status(status: int, body: str = "") -> LexisyncError:
    """Classify a non-success HTTP response."""
    if status in (401, 403):
        message = f"HTTP {status}: {body}" if body else f"HTTP {status}"
        return AuthenticationError(message, status=status)
    return HTTPStatusError(status, body)


def is_retryable(error: BaseException) -> bool:
    """Whether an error is worth retrying by a reconnect loop."""
    if isinstance(error, LexisyncError):
        return error.is_retryable
    # asyncio/aiohttp timeouts and OS-level socket failures
    return isinstance(error, (OSError, TimeoutError))


__all__ = [
    'ErrorSeverity',
    'ErrorCategory',
    'ErrorContext',
    'LexisyncError',
    'ConfigurationError',
    'NetworkError',
    'HTTPStatusError',
    'AuthenticationError',
    'DocumentValidationError',
    'StorageError',
    'SyncError',
    'MergeConflictError',
    'error_for_status',
    'is_retryable',
]

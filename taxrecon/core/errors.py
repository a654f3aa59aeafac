"""
Error Taxonomy for the Reconciliation Data Layer

Provides systematic classification of failure modes with:
- Error categories aligned to the data-layer components
- Recoverability indicators
- Suggested recovery actions
- Structured error context for debugging

Only filter-build, validation and configuration errors ever reach a caller.
Everything else is recovered where it happens (retry, empty map, fallback
dataset) and merely logged.
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import logging
import traceback

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Reference data bootstrap
    PREREQUISITE_NOT_READY = auto()
    DOMAIN_LOAD_FAILED = auto()

    # Query composition
    FILTER_BUILD_FAILED = auto()
    VALIDATION_FAILED = auto()

    # Data retrieval
    FETCH_FAILED = auto()
    AUTHENTICATION_FAILED = auto()
    DATA_SOURCE_UNAVAILABLE = auto()
    DATA_RETRIEVAL_TIMEOUT = auto()
    DATA_FORMAT_ERROR = auto()

    # System Errors
    CONFIGURATION_ERROR = auto()
    UNKNOWN_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RecoveryAction:
    """Suggested action to recover from an error."""
    action_type: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def retry(delay_seconds: float = 0.5, max_attempts: int = 1) -> "RecoveryAction":
        return RecoveryAction(
            action_type="retry",
            description=f"Retry after {delay_seconds}s (max {max_attempts} attempts)",
            parameters={"delay": delay_seconds, "max_attempts": max_attempts}
        )

    @staticmethod
    def fallback(fallback_method: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="fallback",
            description=f"Use fallback: {fallback_method}",
            parameters={"method": fallback_method}
        )


@dataclass
class ClassifiedError:
    """A classified error with full context."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool
    recovery_actions: List[RecoveryAction]

    original_exception: Optional[Exception] = None
    component: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    user_message: Optional[str] = None

    def __post_init__(self):
        if self.original_exception and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            ))

        if not self.user_message:
            self.user_message = self._generate_user_message()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message."""
        messages = {
            ErrorCategory.FILTER_BUILD_FAILED: "The filter could not be built from the current selection.",
            ErrorCategory.VALIDATION_FAILED: "Some required fields are missing or invalid.",
            ErrorCategory.AUTHENTICATION_FAILED: "Unable to authenticate with the reconciliation service.",
            ErrorCategory.DATA_SOURCE_UNAVAILABLE: "The reconciliation service is temporarily unavailable.",
            ErrorCategory.CONFIGURATION_ERROR: "The application is not configured correctly.",
        }
        return messages.get(self.category, f"An error occurred: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "recovery_actions": [
                {"type": a.action_type, "description": a.description}
                for a in self.recovery_actions
            ],
            "component": self.component,
            "context": self.context,
        }


class ReconError(Exception):
    """Base exception for data-layer errors with classification."""

    category = ErrorCategory.UNKNOWN_ERROR
    severity = ErrorSeverity.MEDIUM
    recoverable = False

    def __init__(
        self,
        message: str,
        category: ErrorCategory = None,
        severity: ErrorSeverity = None,
        recoverable: bool = None,
        recovery_actions: List[RecoveryAction] = None,
        context: Dict[str, Any] = None,
    ):
        super().__init__(message)
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        if recoverable is not None:
            self.recoverable = recoverable
        self.recovery_actions = recovery_actions or []
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=self.severity,
            message=str(self),
            recoverable=self.recoverable,
            recovery_actions=self.recovery_actions,
            original_exception=self,
            context=dict(self.context),
        )


class QueryEngineUnavailableError(ReconError):
    """The query engine is not ready yet; recovered by retrying after a backoff."""
    category = ErrorCategory.PREREQUISITE_NOT_READY
    severity = ErrorSeverity.LOW
    recoverable = True


class DataRetrievalError(ReconError):
    """A read against the reconciliation service failed."""
    category = ErrorCategory.FETCH_FAILED
    recoverable = True

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context.setdefault("status_code", status_code)


class FilterBuildError(ReconError):
    """A facet could not be turned into a predicate; always reported to the caller."""
    category = ErrorCategory.FILTER_BUILD_FAILED
    severity = ErrorSeverity.HIGH


class ReconciliationValidationError(ReconError):
    """A new reconciliation draft is missing mandatory values."""
    category = ErrorCategory.VALIDATION_FAILED
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, field_errors: Dict[str, str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_errors = field_errors or {}
        self.context.setdefault("field_errors", self.field_errors)


class ConfigurationError(ReconError):
    """Configuration is missing or malformed."""
    category = ErrorCategory.CONFIGURATION_ERROR
    severity = ErrorSeverity.CRITICAL


def classify_error(
    exception: Exception,
    component: str = None,
    context: Dict[str, Any] = None,
) -> ClassifiedError:
    """Classify an exception into a structured error."""
    context = context or {}

    if isinstance(exception, ReconError):
        classified = exception.classify()
        classified.component = component
        classified.context.update(context)
        return classified

    error_str = str(exception).lower()

    # Authentication
    if "401" in error_str or "403" in error_str or "unauthorized" in error_str:
        return ClassifiedError(
            category=ErrorCategory.AUTHENTICATION_FAILED,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=[],
            original_exception=exception,
            component=component,
            context=context,
        )

    # Timeout
    if "timeout" in error_str or "timed out" in error_str:
        return ClassifiedError(
            category=ErrorCategory.DATA_RETRIEVAL_TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.retry(delay_seconds=5.0)],
            original_exception=exception,
            component=component,
            context=context,
        )

    # Service down
    if "503" in error_str or "connection" in error_str or "unavailable" in error_str:
        return ClassifiedError(
            category=ErrorCategory.DATA_SOURCE_UNAVAILABLE,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.fallback("fallback sample dataset")],
            original_exception=exception,
            component=component,
            context=context,
        )

    if isinstance(exception, (ValueError, KeyError, TypeError)):
        return ClassifiedError(
            category=ErrorCategory.DATA_FORMAT_ERROR,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=False,
            recovery_actions=[],
            original_exception=exception,
            component=component,
            context=context,
        )

    # Default
    return ClassifiedError(
        category=ErrorCategory.UNKNOWN_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(exception),
        recoverable=False,
        recovery_actions=[],
        original_exception=exception,
        component=component,
        context=context,
    )

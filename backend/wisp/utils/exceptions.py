"""Custom exceptions and error handling utilities."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class ProjectError(Exception):
    """
    Base exception for provisioning errors.

    Carries a machine-readable code, the operation that failed, structured
    details and the error chain of underlying causes so a single top-level
    error renders as a readable causal trace.
    """

    code = "PROJECT_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details = details or {}
        self.cause = cause
        if code:
            self.code = code
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_chain = self._capture_error_chain()
        if cause is not None:
            self.__cause__ = cause

    def _capture_error_chain(self) -> List[str]:
        chain = [self.message]
        if isinstance(self.cause, ProjectError):
            chain.extend(self.cause.error_chain)
        elif self.cause is not None:
            chain.append(str(self.cause) or type(self.cause).__name__)
            nested = self.cause.__cause__
            if nested is not None:
                chain.append(str(nested))
        return chain

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for status records and API responses."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp,
            "operation": self.operation,
            "details": self.details,
            "error_chain": self.error_chain,
            "retryable": self.retryable,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {' -> '.join(self.error_chain)} (operation: {self.operation})"


class AlreadyExistsError(ProjectError):
    """Raised when a unique resource already exists."""
    code = "ALREADY_EXISTS"


class NotFoundError(ProjectError):
    """Raised when a project or user is not found."""
    code = "NOT_FOUND"


class ValidationError(ProjectError):
    """Raised when validation fails."""
    code = "VALIDATION_FAILED"


class InvalidTransitionError(ValidationError):
    """Raised when a status write would violate the project state machine."""
    code = "INVALID_TRANSITION"


class ExternalServiceError(ProjectError):
    """Raised when a call to GitHub, Vercel, Cloudflare or the code generator fails."""
    code = "EXTERNAL_SERVICE_FAILURE"
    retryable = True

    def __init__(self, system: str, message: str, operation: str = "unknown", **kwargs):
        self.system = system
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("system", system)
        super().__init__(message, operation=operation, details=details, **kwargs)


class RateLimitedError(ExternalServiceError):
    """Raised when an external service asks the caller to retry later."""
    code = "RATE_LIMITED"

    def __init__(self, system: str, message: str, retry_after: float, operation: str = "unknown", **kwargs):
        self.retry_after = retry_after
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("retry_after", retry_after)
        super().__init__(system, message, operation=operation, details=details, **kwargs)


class DeploymentFailedError(ProjectError):
    """Raised when a deployment ends in a state that cannot be remediated."""
    code = "DEPLOYMENT_FAILED"

    def __init__(self, message: str, logs: Optional[str] = None, **kwargs):
        self.logs = logs
        super().__init__(message, **kwargs)


class DomainVerificationTimeoutError(ProjectError):
    """Raised when the custom domain never verifies within the polling budget."""
    code = "DOMAIN_VERIFICATION_TIMEOUT"
    retryable = True


class FixGenerationExhaustedError(ProjectError):
    """Raised when every self-healing attempt was used without a healthy deployment."""
    code = "FIX_GENERATION_EXHAUSTED"


class FixUnrecoverableError(ProjectError):
    """Raised when the code generator produced no fix for a deployment error."""
    code = "FIX_UNRECOVERABLE"


class TeardownError(ProjectError):
    """Raised after teardown when one or more resource deletions failed."""
    code = "TEARDOWN_FAILED"
    retryable = True

    def __init__(self, message: str, failures: Dict[str, BaseException], **kwargs):
        self.failures = failures
        details = dict(kwargs.pop("details", None) or {})
        details["failures"] = {resource: str(error) for resource, error in failures.items()}
        super().__init__(message, details=details, **kwargs)
        self.error_chain.extend(f"{resource}: {error}" for resource, error in failures.items())


class PipelineError(ProjectError):
    """Wraps an unexpected exception raised inside the provisioning pipeline."""
    code = "PIPELINE_FAILED"


class ProjectBusyError(ProjectError):
    """Raised when another job holds a project's processing lock."""
    code = "PROJECT_BUSY"
    retryable = True


def response_json(response, system: str, operation: str) -> Any:
    """
    Decode a JSON response body from an external service.

    Gateways answer with HTML error pages, so a body that is not JSON is an
    ExternalServiceError carrying the upstream text.
    """
    try:
        return response.json()
    except ValueError as e:
        raise ExternalServiceError(
            system,
            f"{operation} returned a non-JSON response: {response.status_code} - {response.text[:500]}",
            operation=operation,
            details={"status_code": response.status_code},
            cause=e,
        )


_HTTP_STATUS_BY_ERROR = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyExistsError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


def to_http_exception(error: ProjectError) -> HTTPException:
    """
    Convert a provisioning error to an HTTP exception.

    Args:
        error: The typed error raised by the core

    Returns:
        HTTPException carrying the structured error as its detail
    """
    for error_type, status_code in _HTTP_STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.to_dict())
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.to_dict(),
    )


def not_found_error(resource: str, identifier: Optional[str] = None) -> HTTPException:
    """
    Create a standardized 404 error.

    Args:
        resource: Name of the resource (e.g., "Project", "User")
        identifier: Optional identifier that was not found

    Returns:
        HTTPException with 404 status
    """
    message = f"{resource} not found"
    if identifier:
        message += f": {identifier}"
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)


def validation_error(message: str) -> HTTPException:
    """
    Create a standardized 400 validation error.

    Args:
        message: Validation error message

    Returns:
        HTTPException with 400 status
    """
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def forbidden_error(message: str = "Access denied") -> HTTPException:
    """
    Create a standardized 403 forbidden error.

    Args:
        message: Forbidden error message

    Returns:
        HTTPException with 403 status
    """
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)

"""
CalorieSnap Backend: Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for each failure stage.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return JSON error responses with the matching HTTP status code.
Who:   Raised by services; caught by the handlers in main.py.

Exception Hierarchy:
    CalorieSnapError (base)
    ├── InputError                 → 400 Bad Request
    │   └── PayloadTooLargeError   → 413 Payload Too Large
    ├── NotFoundError              → 404 Not Found
    ├── FileStorageError           → 500 Internal Server Error
    ├── RateLimitExceededError     → 429 Too Many Requests
    └── AnalysisError              → 500 Internal Server Error
        ├── FetchError             (image bytes unobtainable)
        ├── WebhookError           (external analysis call failed)
        ├── ExtractionError        (response shape not recognized)
        └── ValidationError        (payload does not match NutritionPayload)

The user-visible message of an AnalysisError goes into the `details`
field of the response; `context` is only logged.
"""

from typing import Any, Dict, Optional


class CalorieSnapError(Exception):
    """
    Base exception for all CalorieSnap application errors.

    Attributes:
        message:  Human-readable error description (safe to return to clients)
        context:  Additional debug info (logged, never returned)
    """

    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InputError(CalorieSnapError):
    """
    Raised when the request body is missing or malformed.

    Examples: no `imageUrl`, rating outside 1..4, an upload that is not an
    image. Not retried; the client has to fix the request.
    """

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid request",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class PayloadTooLargeError(InputError):
    """Raised when an upload exceeds the configured byte cap."""

    status_code = 413

    def __init__(self, max_size: int, actual_size: Optional[int] = None):
        max_mb = max_size / (1024 * 1024)
        if actual_size is not None:
            message = (
                f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds "
                f"maximum of {max_mb:.0f}MB."
            )
        else:
            message = f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image."
        super().__init__(
            message=message,
            field="file",
            context={"max_size": max_size, "actual_size": actual_size},
        )
        self.max_size = max_size


class NotFoundError(CalorieSnapError):
    """Raised when a stored object or analysis record does not exist."""

    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class FileStorageError(CalorieSnapError):
    """
    Raised when reading or writing the upload storage fails.

    Disk full, permission denied, or an S3 client error. The client must
    retry the whole upload.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CalorieSnapError):
    """Raised when a client exceeds the per-IP request rate limit."""

    status_code = 429

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Analysis pipeline errors
# ══════════════════════════════════════════════════════════════════════════

class AnalysisError(CalorieSnapError):
    """
    Base class for failures of the analyze-meal pipeline.

    Every stage failure aborts the request: nothing is stored and nothing is
    retried inside the gateway.
    """

    stage = "analysis"

    def __init__(
        self,
        message: str = "Meal analysis failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.setdefault("stage", self.stage)
        super().__init__(message=message, context=ctx)


class FetchError(AnalysisError):
    """Image bytes could not be obtained (missing file, non-2xx, network error)."""

    stage = "fetch"


class WebhookError(AnalysisError):
    """
    The external analysis call failed or returned an unusable status.

    `async_mode` is True when the webhook acknowledged with "Workflow was
    started" instead of a result. That needs operator action, not a retry.
    """

    stage = "webhook"

    def __init__(
        self,
        message: str = "Analysis webhook call failed",
        status_code: Optional[int] = None,
        async_mode: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["upstream_status"] = status_code
        ctx["async_mode"] = async_mode
        super().__init__(message=message, context=ctx)
        self.upstream_status = status_code
        self.async_mode = async_mode


class ExtractionError(AnalysisError):
    """The webhook responded but none of the known wrappings matched."""

    stage = "extraction"


class ValidationError(AnalysisError):
    """
    The extracted payload does not match the NutritionPayload shape.

    `path` is the dotted location of the first violation, e.g.
    `food.0.calories`.
    """

    stage = "validation"

    def __init__(
        self,
        message: str = "Nutrition payload failed validation",
        path: str = "<root>",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["path"] = path
        super().__init__(message=message, context=ctx)
        self.path = path

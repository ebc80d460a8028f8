"""
Exceptions raised by the LiveTrack text feed.
"""
from typing import Any, Dict, Optional


class LiveTrackException(Exception):
    """
    Base exception for all LiveTrack feed errors.

    Carries a machine-readable code and a details mapping so callers can
    log or report failures consistently.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for structured logging."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class ConfigurationError(LiveTrackException):
    """Raised when the configuration cannot be loaded or validated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code='CONFIGURATION_ERROR', details=details)


class UpstreamRejectedError(LiveTrackException):
    """
    Raised when the provider answers with a non-200 status.

    Usually means the session link expired and a new one has not been
    delivered yet.
    """

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(
            message=f"Provider responded with HTTP {status_code}",
            code='UPSTREAM_REJECTED',
            details={'status_code': status_code, 'body': body}
        )


class MalformedResponseError(LiveTrackException):
    """Raised when a 200 response does not have the expected shape."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code='MALFORMED_RESPONSE', details=details)


class TemplateError(LiveTrackException):
    """Base class for template compilation and evaluation errors."""

    def __init__(self, message: str, template: Optional[str] = None, code: Optional[str] = None):
        self.template = template
        super().__init__(
            message=message,
            code=code or 'TEMPLATE_ERROR',
            details={'template': template} if template is not None else {}
        )


class TemplateSyntaxError(TemplateError):
    """Raised when a template expression cannot be parsed or uses forbidden syntax."""

    def __init__(self, message: str, template: Optional[str] = None):
        super().__init__(message, template=template, code='TEMPLATE_SYNTAX')


class TemplateEvaluationError(TemplateError):
    """Raised when a template expression fails while being evaluated."""

    def __init__(self, message: str, template: Optional[str] = None):
        super().__init__(message, template=template, code='TEMPLATE_EVALUATION')

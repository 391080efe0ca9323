"""
Custom exceptions for Client Pulse.
"""


class ClientPulseException(Exception):
    """Base exception for all custom exceptions."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(ClientPulseException):
    """Configuration is invalid or missing."""

    pass


# ============================================================================
# Record Store Exceptions
# ============================================================================


class DatabaseError(ClientPulseException):
    """Database operation failed."""

    pass


class RecordStoreUnavailableError(DatabaseError):
    """Record store could not be read or written."""

    pass


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist."""

    pass


# ============================================================================
# Analyzer Exceptions
# ============================================================================


class AnalyzerError(ClientPulseException):
    """Error producing an analysis from the language model."""

    pass


class AnalyzerNotConfiguredError(AnalyzerError, ConfigurationError):
    """No analyzer model has credentials configured."""

    pass


class AnalyzerRateLimitError(AnalyzerError):
    """Model provider rate limit exceeded."""

    pass


class MalformedAnalysisError(AnalyzerError):
    """Model returned output that is not a usable analysis."""

    pass


class GeminiAPIError(AnalyzerError):
    """Error communicating with the Gemini API."""

    pass


class ClaudeAPIError(AnalyzerError):
    """Error communicating with the Claude API."""

    pass


class AnalysisFailedError(ClientPulseException):
    """
    An analysis run was aborted before anything was persisted.

    Carries the input bundle so the caller can offer an immediate retry
    from the same state.
    """

    def __init__(self, message: str, bundle=None, client_id: str = None):
        super().__init__(message)
        self.bundle = bundle
        self.client_id = client_id


# ============================================================================
# Meeting Source Exceptions
# ============================================================================


class FathomAPIError(ClientPulseException):
    """Error communicating with the Fathom API."""

    pass


class WebhookVerificationError(ClientPulseException):
    """Webhook signature missing or invalid."""

    pass


# ============================================================================
# Graph API Exceptions
# ============================================================================


class GraphAPIError(ClientPulseException):
    """Error communicating with Microsoft Graph API."""

    pass


class AuthenticationError(GraphAPIError):
    """Authentication failed."""

    pass


class RateLimitError(GraphAPIError):
    """Graph API rate limit exceeded."""

    pass


# ============================================================================
# Notification Exceptions
# ============================================================================


class NotificationError(ClientPulseException):
    """Notification delivery failed."""

    pass


class EmailSendError(NotificationError):
    """Failed to send email."""

    pass


class SlackPostError(NotificationError):
    """Failed to post to Slack."""

    pass


# ============================================================================
# API Token Exceptions
# ============================================================================


class InvalidTokenError(ClientPulseException):
    """API bearer token is missing or invalid."""

    pass


class TokenExpiredError(InvalidTokenError):
    """API bearer token expired."""

    pass

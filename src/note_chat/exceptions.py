"""Domain exception hierarchy for the note chat panel."""

from __future__ import annotations


class NoteChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class ConfigurationError(NoteChatError):
    """Raised when provider credentials or model are missing."""


class ConfigValidationError(NoteChatError):
    """Raised when configuration cannot be validated safely."""


class ProviderError(NoteChatError):
    """Raised when the completion provider reports a failure."""


class ProviderConnectionError(ProviderError):
    """Raised when the provider endpoint cannot be reached."""


class ProviderTimeoutError(ProviderError):
    """Raised when a request exceeds the configured deadline."""


class ProviderAuthenticationError(ProviderError):
    """Raised when the provider rejects the API key."""


class ProviderModelNotFoundError(ProviderError):
    """Raised when the configured model is unknown to the provider."""


class ProviderRateLimitError(ProviderError):
    """Raised when the provider throttles the request."""


class ClipboardError(NoteChatError):
    """Raised when the system clipboard cannot be written."""

"""Error taxonomy shared by the bot components.

None of these errors terminate the process. Handlers decide whether an
error is reported back to the chat, logged, or silently dropped.
"""

from __future__ import annotations


class BotError(Exception):
    """Base exception for all bot errors."""


class AuthRejectedError(BotError):
    """Raised when a sender is not on the configured allow-list."""


class ArgumentError(BotError):
    """Raised when a command is given unsupported arguments."""


class UpstreamQueryError(BotError):
    """Raised when an Alertmanager or Prometheus call fails."""


class TemplateError(BotError):
    """Base exception for template failures."""


class TemplateLoadError(TemplateError):
    """Raised when a template file cannot be read or compiled."""


class TemplateExecError(TemplateError):
    """Raised when rendering a compiled template fails."""


class SessionTokenNotFoundError(BotError):
    """Raised when a callback token is unknown, consumed or expired."""


class DeliveryError(BotError):
    """Raised when a chat operation could not be delivered."""


class PayloadError(BotError):
    """Raised when an inbound webhook payload cannot be decoded."""

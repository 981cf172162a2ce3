"""
Custom Exception Classes

This module defines custom exceptions for the relay bot so that startup
failures and per-message failures can be told apart at the process boundary.
"""

from typing import Optional


class RelayBotBaseException(Exception):
    """Base exception for the relay bot application."""

    pass


class ConfigurationError(RelayBotBaseException):
    """Raised for configuration problems."""

    pass


class SessionStoreError(RelayBotBaseException):
    """Raised when the session database cannot be opened or resolved."""

    pass


class PairingError(RelayBotBaseException):
    """Raised when first-time pairing does not end with a paired device."""

    def __init__(self, last_event: Optional[str] = None, message: Optional[str] = None):
        self.last_event = last_event
        details = f"Pairing did not complete (last event: {last_event or 'none'})"
        if message:
            super().__init__(f"{message} - Details: {details}")
        else:
            super().__init__(details)


class ChatConnectionError(RelayBotBaseException):
    """Raised for errors connecting to the Matrix homeserver."""

    pass


class GenerationError(RelayBotBaseException):
    """Raised when the generative-text API request fails."""

    def __init__(self, model: str, original_error: Exception, message: Optional[str] = None):
        self.model = model
        self.original_error = original_error
        details = f"Error generating content with model '{model}': {original_error}"
        if message:
            super().__init__(f"{message} - Details: {details}")
        else:
            super().__init__(details)

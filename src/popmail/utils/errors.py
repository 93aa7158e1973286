"""Centralized error types for the POP3 client."""

from enum import Enum
from typing import Any, Dict, Optional


## Error Categories


class ErrorCategory(Enum):
    """Categories of errors for better handling."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    SERVER = "server"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


## Custom Exceptions


class PopMailError(Exception):
    """Base exception for all popmail errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        """Initialise PopMailError with optional message and details."""
        self.message = self.user_message if message is None else message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error details to a dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Transport Errors


class TransportError(PopMailError):
    """Dial, read, write or close failure. Fatal to the connection."""

    category = ErrorCategory.NETWORK
    user_message = "The connection to the mail server failed"


class TransportTimeoutError(TransportError):
    """Dial or command round trip exceeded its deadline."""

    user_message = "The connection timed out"


## Protocol Errors


class ProtocolError(PopMailError):
    """Status line matched neither the success nor the failure grammar."""

    category = ErrorCategory.PROTOCOL
    user_message = "The server sent an unrecognised response"


class SessionStateError(ProtocolError):
    """Operation issued in a session state where it is not legal."""

    user_message = "Operation not allowed in the current session state"


## Server Errors


class ServerError(PopMailError):
    """Well-formed -ERR response. Local to the command; the connection stays usable."""

    category = ErrorCategory.SERVER
    user_message = "unknown error (no info specified in response)"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        super().__init__(message, details)
        self.server_message = self.message


## Parse Errors


class ParseError(PopMailError):
    """Numeric field, date or header could not be parsed."""

    category = ErrorCategory.VALIDATION
    user_message = "Failed to parse server data"


class MessageDecodeError(ParseError):
    """Exception for failures while decoding a retrieved message."""

    user_message = "Failed to decode message"


class UnknownCharsetError(MessageDecodeError):
    """A message part declares a charset Python has no codec for.

    The partially decoded message is kept in ``entity`` so callers that
    tolerate the condition can keep using it.
    """

    user_message = "Message uses an unknown character set"

    def __init__(
        self,
        message: str | None = None,
        details: Dict[str, Any] | None = None,
        entity: Optional[Any] = None,
    ):
        super().__init__(message, details)
        self.entity = entity


class InvalidArgumentError(PopMailError, ValueError):
    """Exception for command arguments rejected before sending."""

    category = ErrorCategory.VALIDATION
    user_message = "Invalid command argument"


## Configuration Errors


class ConfigurationError(PopMailError):
    """Configuration could not be loaded or applied."""

    category = ErrorCategory.CONFIGURATION
    user_message = "popmail is not configured correctly"


class InvalidConfigError(ConfigurationError):
    """Configuration file or override failed validation."""

    user_message = "Configuration values are invalid"


## Utility Functions


def format_error_message(error: Exception) -> str:
    """Message to show a user; internal errors are not exposed."""
    if not isinstance(error, PopMailError):
        return f"An unexpected {type(error).__name__} occurred, see the popmail log"
    return error.message

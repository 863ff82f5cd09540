"""Application-level exception types for botframe."""

from __future__ import annotations


class BotFrameError(Exception):
    """Base exception for botframe."""


class ConfigurationError(BotFrameError):
    """Raised when settings cannot be turned into a working adapter."""


class BotArgumentError(BotFrameError, ValueError):
    """Raised when a required argument is missing or empty."""


class AuthenticationError(BotFrameError):
    """Raised when the caller's identity cannot be validated."""


class InvalidServiceUrlError(BotFrameError):
    """Raised when an activity carries a service URL that is not a valid http(s) URL."""

    def __init__(self, service_url: str | None, message: str | None = None) -> None:
        super().__init__(message or f"Invalid Service URL: {service_url}")
        self.service_url = service_url


class ConnectorError(BotFrameError):
    """Raised when the connector service answers with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvokeResponseMissingError(BotFrameError, RuntimeError):
    """Raised when an invoke turn finished without recording an invoke response."""

    def __init__(self) -> None:
        super().__init__("Bot failed to return a valid 'invokeResponse' activity.")


class NotImplementedOperationError(BotFrameError, NotImplementedError):
    """Raised by adapter operations that are not supported yet."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} is not implemented")
        self.operation = operation


class ReadOnlyScopeError(BotFrameError, TypeError):
    """Raised when writing to a memory scope that cannot be modified."""


class TurnStateReleaseError(BotFrameError):
    """Raised when one or more turn state values failed to release."""

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        keys = ", ".join(key for key, _ in failures)
        super().__init__(f"Failed to release turn state values: {keys}")
        self.failures = failures

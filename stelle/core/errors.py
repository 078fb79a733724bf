from typing import Optional


class StelleError(Exception):
    """Base class for all companion errors."""


class ConfigurationError(StelleError):
    """A credential, endpoint or collaborator is missing. Not retried."""


class TransportError(StelleError):
    """Network failure, timeout or non-2xx response from a remote service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ContractViolation(StelleError):
    """The response arrived but its payload does not match the expected shape."""


class PersistenceError(StelleError):
    """Reading or writing the conversation history failed."""


class BackendNotImplementedError(StelleError):
    """The selected backend exists in config but has no implementation yet."""


class TurnInProgressError(StelleError):
    """A user turn was submitted while the previous one is still running."""

"""
Custom error classes for Pipeline Pulse.
Structured error handling with error codes across all engines.

Hierarchy:
    PulseError
    ├── DataError
    │   ├── InvalidInputError
    │   └── ConfigError
    └── NarrativeError
"""


class PulseError(Exception):
    """Base exception for all Pipeline Pulse errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- Data Errors ---

class DataError(PulseError):
    """Base class for data processing errors."""
    pass


class InvalidInputError(DataError):
    """A call-level argument has the wrong shape (not a list, bad `now`, ...)."""

    def __init__(self, message: str, argument: str = None):
        super().__init__(
            message, code="INVALID_INPUT", details={"argument": argument},
        )


class ConfigError(DataError):
    """Configuration file or profile error."""

    def __init__(self, message: str, config_path: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"config_path": config_path},
        )


# --- Collaborator Errors ---

class NarrativeError(PulseError):
    """The AI narrator failed to produce a usable narrative."""

    def __init__(self, message: str, provider: str = None):
        super().__init__(
            message, code="AI_NARRATIVE_FAILED", details={"provider": provider},
        )


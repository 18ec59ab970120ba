from enum import Enum

# errors.py - Error taxonomy shared by every command


class Outcome(str, Enum):
    """Tagged result of an external tool call."""
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


class OpsError(Exception):
    """Base class for operator command errors."""


class RecoverableError(OpsError):
    """Logged as a warning; the command carries on."""


class FatalError(OpsError):
    """Aborts the command with exit status 1."""


class ReadinessTimeout(FatalError):
    def __init__(self, description: str, timeout: float):
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class CredentialError(FatalError):
    pass

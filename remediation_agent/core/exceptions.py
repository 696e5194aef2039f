# remediation_agent/core/exceptions.py
"""
Error taxonomy for the remediation engine.

Each class carries a ``fatal`` flag. Fatal errors propagate to the caller;
recoverable ones are recorded inside the investigation loop as data for the
next reasoning step.
"""


class RemediationError(Exception):
    fatal: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RemediationError):
    """Malformed input, unknown session, or an illegal state change."""
    fatal = True


class SessionNotFoundError(ValidationError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class TransientInfrastructureError(RemediationError):
    """Cluster unreachable, timeouts, DNS or auth failures."""
    fatal = False


class KubectlCommandError(TransientInfrastructureError):
    def __init__(self, message: str, command: str = None, exit_code: int = None):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class AIServiceError(RemediationError):
    """The reasoning call itself failed (as opposed to returning bad content)."""
    fatal = False


class CapabilityGapError(RemediationError):
    """No available safe operation can resolve the issue."""
    fatal = True

    def __init__(self, message: str, session_id: str = None):
        super().__init__(message)
        self.session_id = session_id


class PlanningError(RemediationError):
    """The final analysis could not be turned into a valid remediation plan."""
    fatal = True

    def __init__(self, message: str, session_id: str = None):
        super().__init__(message)
        self.session_id = session_id


class SessionStorageError(RemediationError):
    fatal = True

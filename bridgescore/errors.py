"""Error taxonomy for the call-scoring engine"""

from typing import Optional


class BridgeScoreError(Exception):
    """Base class for all scoring engine errors"""


class ConfigurationError(BridgeScoreError):
    """Remote scoring route unusable or tenant configuration missing"""


class RemoteScoringError(BridgeScoreError):
    """Anything that aborts a remote scoring attempt"""


class RemoteTransportError(RemoteScoringError):
    """Network failure or non-success response from the assistant service"""


class RunTerminalError(RemoteScoringError):
    """Assistant run ended as failed, cancelled or expired"""

    def __init__(self, status: str, run_id: Optional[str] = None, last_error: Optional[str] = None):
        self.status = status
        self.run_id = run_id
        self.last_error = last_error
        message = f"Assistant run {run_id or '?'} {status}"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


class RunTimeoutError(RemoteScoringError, TimeoutError):
    """Run did not reach a terminal state within the attempt cap or deadline"""


class ScoringCancelledError(RemoteScoringError):
    """Caller signalled cancellation while a run was in flight"""


class ResponseParseError(RemoteScoringError):
    """Assistant reply had no JSON object or failed field validation"""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        self.raw_response = raw_response
        super().__init__(message)


class PersistenceError(BridgeScoreError):
    """Storage read or write failure"""


class CallNotFoundError(PersistenceError, LookupError):
    """No stored call with the requested id"""


class InvalidRequestError(BridgeScoreError, ValueError):
    """Caller misuse, e.g. an empty transcript"""

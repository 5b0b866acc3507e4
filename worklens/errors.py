from __future__ import annotations


class WorklensError(RuntimeError):
    retryable = False


class InvalidState(WorklensError):
    """Illegal session transition or a second live session for one owner."""


class SessionNotFound(WorklensError):
    pass


class OutOfOrder(WorklensError):
    pass


class WrongSession(WorklensError):
    pass


class UpstreamRejected(WorklensError):
    def __init__(self, status: int | None, detail: str):
        super().__init__(f"Inference request rejected (HTTP {status}): {detail}")
        self.status = status
        self.detail = detail


class UpstreamUnavailable(WorklensError):
    retryable = True

    def __init__(self, attempts: int, cause: Exception | None = None):
        super().__init__(f"Inference backend unavailable after {attempts} attempt(s): {cause}")
        self.attempts = attempts
        self.cause = cause


class AnalysisCancelled(WorklensError):
    retryable = True


class MalformedResponse(WorklensError):
    retryable = True

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class PersistenceError(WorklensError):
    retryable = True

"""Error taxonomy shared by the interpreter, dispatcher and retry wrapper."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ExecutionError(Exception):
    """Base error carrying a machine readable error-kind code."""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details or {}


class ConfigurationError(ExecutionError):
    """Malformed catalog content. Retrying never fixes these."""

    code = "CONFIGURATION"


class UnsupportedOperation(ConfigurationError):
    code = "UNSUPPORTED_OPERATION"


class UnsupportedCondition(ConfigurationError):
    code = "UNSUPPORTED_CONDITION"


class UnsupportedWait(ConfigurationError):
    code = "UNSUPPORTED_WAIT"


class UnsupportedAssertion(ConfigurationError):
    code = "UNSUPPORTED_ASSERTION"


class UnsupportedLocatorStrategy(ConfigurationError):
    code = "UNSUPPORTED_LOCATOR"


class InvalidBranchTarget(ConfigurationError):
    code = "INVALID_BRANCH_TARGET"


class FileNotFound(ConfigurationError):
    """Upload source does not exist on the local filesystem."""

    code = "FILE_NOT_FOUND"


class ElementNotFound(ExecutionError):
    code = "ELEMENT_NOT_FOUND"


class WaitTimeout(ExecutionError):
    code = "WAIT_TIMEOUT"


class SessionUnreachable(ExecutionError):
    """The browser session died; the retry wrapper rebuilds it."""

    code = "SESSION_UNREACHABLE"


class BrokerConsumeTimeout(ExecutionError):
    code = "BROKER_CONSUME_TIMEOUT"


class HttpCallFailed(ExecutionError):
    code = "HTTP_CALL_FAILED"


class AssertionMismatch(ExecutionError):
    code = "ASSERTION_MISMATCH"


class StepFailed(ExecutionError):
    """A single step exhausted its retry budget."""

    code = "STEP_FAILED"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(message, details={"attempts": attempts})
        self.cause = cause
        self.attempts = attempts
        self.__cause__ = cause


class ScriptFailed(ExecutionError):
    """A script run for one dataset row stopped on a failed step."""

    code = "SCRIPT_FAILED"

    def __init__(self, message: str, *, test_id: str, row_number: Optional[int], step: StepFailed):
        super().__init__(message, details={"test_id": test_id, "row": row_number})
        self.test_id = test_id
        self.row_number = row_number
        self.step = step
        self.__cause__ = step


class DatasetRunFailed(ExecutionError):
    """Aggregate raised when rows failed under the ``continue`` policy."""

    code = "DATASET_RUN_FAILED"

    def __init__(self, test_id: str, failures: List[ScriptFailed]):
        rows = ", ".join(str(failure.row_number) for failure in failures)
        super().__init__(
            f"Test '{test_id}' failed for dataset row(s) {rows}",
            details={"test_id": test_id, "rows": [failure.row_number for failure in failures]},
        )
        self.test_id = test_id
        self.failures = failures
        if failures:
            self.__cause__ = failures[0]


_SESSION_LOST_MARKERS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "target closed",
    "connection closed",
    "browser has disconnected",
)


def is_session_lost(exc: BaseException) -> bool:
    """Whether ``exc`` means the browser session itself is gone."""

    if isinstance(exc, SessionUnreachable):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _SESSION_LOST_MARKERS)

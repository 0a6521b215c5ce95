"""Custom exceptions for flowreplay."""


class FlowReplayError(Exception):
    """Base exception for flowreplay errors."""
    pass


class ExecutionError(FlowReplayError):
    """Raised when the subject could not be executed. Retried by policy."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SubjectTimeoutError(ExecutionError):
    """Raised when a subject invocation exceeds its timeout."""
    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Subject timed out after {timeout_seconds:g}s",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class FixtureError(ExecutionError):
    """Raised when a runnable copy of the workflow cannot be prepared."""
    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to prepare workflow {path}: {reason}", {"path": path})
        self.path = path
        self.reason = reason


class ConfigurationError(FlowReplayError):
    """Raised when a test is misconfigured. Never retried."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SetupError(FlowReplayError):
    """Raised when a suite setup hook fails."""
    def __init__(self, suite: str, cause: BaseException):
        super().__init__(f"Setup failed for suite '{suite}': {cause}")
        self.suite = suite
        self.cause = cause


class TeardownError(FlowReplayError):
    """Wraps a suite teardown failure. Logged, never raised out of a run."""
    def __init__(self, suite: str, cause: BaseException):
        super().__init__(f"Teardown failed for suite '{suite}': {cause}")
        self.suite = suite
        self.cause = cause


class SuiteLoadError(FlowReplayError):
    """Raised when a suite file cannot be read or parsed."""
    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid test file {path}: {reason}")
        self.path = path
        self.reason = reason


class MaxDepthExceededError(FlowReplayError):
    """Raised when differing values nest deeper than the comparison allows."""
    def __init__(self, depth: int, path: str):
        super().__init__(f"Maximum depth ({depth}) exceeded at path: {path}")
        self.depth = depth
        self.path = path


class TriggerError(ExecutionError):
    """Raised when a trigger cannot be delivered or is not observed in time."""
    def __init__(self, trigger_type: str, reason: str):
        super().__init__(f"{trigger_type} trigger failed: {reason}", {"trigger_type": trigger_type})
        self.trigger_type = trigger_type
        self.reason = reason

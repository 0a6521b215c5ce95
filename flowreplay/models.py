"""Data models for flowreplay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class DiffKind(Enum):
    TYPE_MISMATCH = "type-mismatch"
    VALUE_MISMATCH = "value-mismatch"
    LENGTH_MISMATCH = "length-mismatch"
    MISSING_PROPERTY = "missing-property"
    UNEXPECTED_PROPERTY = "unexpected-property"
    PATTERN_MISMATCH = "pattern-mismatch"


class TestStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"

    __test__ = False


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class Difference:
    """A single disagreement between actual and expected output."""
    path: str
    expected: Any
    actual: Any
    kind: DiffKind

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "expected": self.expected,
            "actual": self.actual,
            "type": self.kind.value,
        }


@dataclass
class ValidationResult:
    """Verdict of comparing actual output against expected output."""
    passed: bool
    expected: Any = None
    actual: Any = None
    message: Optional[str] = None
    differences: list[Difference] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
        }
        if self.message:
            result["message"] = self.message
        if self.differences:
            result["differences"] = [d.to_dict() for d in self.differences]
        return result


# A scenario condition is either a predicate over the captured request, a
# JSONPath condition string, or a dict matched as an expected value.
Condition = Union[Callable[["CapturedCall"], bool], str, dict]


@dataclass
class MockScenario:
    """A (condition, response) pair evaluated in declaration order."""
    condition: Condition
    response: Any


@dataclass
class MockRule:
    """Declarative stub for an outbound call a workflow node would make."""
    node_type: str = "http"
    node_name: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None
    path: Optional[str] = None
    response: Any = None
    delay: float = 0.0
    scenarios: list[MockScenario] = field(default_factory=list)


@dataclass
class MockEndpoint:
    """Routable form of a mock, keyed by METHOD:PATH."""
    method: str
    path: str
    response: Any = None
    delay: float = 0.0
    scenarios: list[MockScenario] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.method.upper()}:{self.path}"


@dataclass
class CapturedCall:
    """One request received by the virtual service."""
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    query: dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_timestamp)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "path": self.path,
            "headers": self.headers,
            "body": self.body,
            "query": self.query,
            "timestamp": self.timestamp,
        }


@dataclass
class TriggerSpec:
    """Out-of-band trigger that starts the workflow (webhook, schedule, ...)."""
    type: str
    node_name: Optional[str] = None
    config: dict = field(default_factory=dict)
    # Deliver the trigger to the virtual service before invoking the subject
    fire: bool = False
    auto_cleanup: bool = True

    @property
    def payload(self) -> Optional[dict]:
        body = self.config.get("body") if isinstance(self.config, dict) else None
        return body


@dataclass
class SuiteConfig:
    """Suite-level execution settings. Unset values fall back to the runner's."""
    concurrency: Optional[int] = None
    timeout: Optional[float] = None
    retries: Optional[int] = None
    bail: Optional[bool] = None
    environment: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TestCase:
    """A single declarative test against a workflow."""
    name: str
    workflow: Optional[str] = None
    inputs: Optional[dict] = None
    expected_outputs: Optional[list] = None
    mocks: list[MockRule] = field(default_factory=list)
    timeout: Optional[float] = None
    retries: Optional[int] = None
    skip: bool = False
    trigger: Optional[TriggerSpec] = None

    __test__ = False


@dataclass
class TestSuite:
    """Root aggregate for one run of a suite file."""
    name: str
    tests: list[TestCase] = field(default_factory=list)
    workflow: Optional[str] = None
    config: SuiteConfig = field(default_factory=SuiteConfig)
    setup: Optional[Callable[[], None]] = None
    teardown: Optional[Callable[[], None]] = None

    __test__ = False


@dataclass
class TestResult:
    """Outcome of one test case."""
    name: str
    status: TestStatus
    duration: float = 0.0
    output: Any = None
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None
    retries: int = 0

    __test__ = False

    def to_dict(self) -> dict:
        result = {
            "name": self.name,
            "status": self.status.value,
            "duration": round(self.duration, 4),
            "retries": self.retries,
        }
        if self.output is not None:
            result["output"] = self.output
        if self.validation:
            result["validation"] = self.validation.to_dict()
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class TestResults:
    """Aggregate results of a suite run. Tests are kept in completion order."""
    suite: str
    tests: list[TestResult] = field(default_factory=list)
    duration: float = 0.0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0
    timestamp: str = ""

    __test__ = False

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = _utc_timestamp()

    @property
    def total(self) -> int:
        return len(self.tests)

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.errors == 0

    def add(self, result: TestResult):
        self.tests.append(result)

    def finalize(self, duration: float) -> "TestResults":
        """Recompute counts from the recorded results and stamp the duration."""
        self.duration = duration
        self.passed = sum(1 for t in self.tests if t.status == TestStatus.PASSED)
        self.failed = sum(1 for t in self.tests if t.status == TestStatus.FAILED)
        self.errors = sum(1 for t in self.tests if t.status == TestStatus.ERROR)
        self.skipped = sum(1 for t in self.tests if t.status == TestStatus.SKIPPED)
        return self

    def merge(self, other: "TestResults"):
        """Fold another suite's results into this aggregate."""
        self.tests.extend(other.tests)
        self.passed += other.passed
        self.failed += other.failed
        self.errors += other.errors
        self.skipped += other.skipped

    def to_dict(self) -> dict:
        return {
            "suite": self.suite,
            "timestamp": self.timestamp,
            "duration": round(self.duration, 4),
            "summary": {
                "total": self.total,
                "passed": self.passed,
                "failed": self.failed,
                "errors": self.errors,
                "skipped": self.skipped,
            },
            "tests": [t.to_dict() for t in self.tests],
        }

    def print_summary(self):
        print(f"\n{self.suite}: {self.passed}/{self.total} passed ({self.duration:.2f}s)")
        if self.failed > 0:
            print(f"  Failed: {self.failed}")
        if self.errors > 0:
            print(f"  Errors: {self.errors}")
        if self.skipped > 0:
            print(f"  Skipped: {self.skipped}")

        for test in self.tests:
            if test.status == TestStatus.FAILED and test.validation:
                print(f"  FAIL: {test.name} - {test.validation.message}")
                for diff in test.validation.differences:
                    print(f"    - [{diff.kind.value}] {diff.path or '$'}: "
                          f"expected {diff.expected!r}, got {diff.actual!r}")
            elif test.status == TestStatus.ERROR:
                print(f"  ERROR: {test.name} - {test.error}")

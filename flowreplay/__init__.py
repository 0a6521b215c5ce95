"""
FlowReplay - Replay Testing for Workflow Automations

Runs declarative test suites against workflow definitions: outbound calls are
answered by a local virtual service, outputs are checked with a wildcard- and
pattern-aware structural differ, and node/connection coverage is tracked
across runs.
"""

from .config import RunnerConfig, configure_logging
from .coverage import (
    CoverageCollector,
    CoverageReport,
    WorkflowCoverage,
    WorkflowGraph,
    load_workflow_graph,
)
from .differ import Differ, find_differences, matches, validate
from .exceptions import (
    ConfigurationError,
    ExecutionError,
    FixtureError,
    FlowReplayError,
    MaxDepthExceededError,
    SetupError,
    SubjectTimeoutError,
    SuiteLoadError,
    TeardownError,
    TriggerError,
)
from .loader import load_suite, parse_suite
from .models import (
    DiffKind,
    Difference,
    MockRule,
    MockScenario,
    SuiteConfig,
    TestCase,
    TestResult,
    TestResults,
    TestStatus,
    TestSuite,
    TriggerSpec,
    ValidationResult,
)
from .orchestrator import TestOrchestrator, run_tests
from .subject import CallableSubject, ProcessSubject
from .triggers import TriggerSimulator
from .virtual_service import VirtualService

__version__ = "1.0.0"
__all__ = [
    # Orchestration
    "TestOrchestrator",
    "RunnerConfig",
    "configure_logging",
    "run_tests",
    # Suites
    "TestSuite",
    "TestCase",
    "SuiteConfig",
    "MockRule",
    "MockScenario",
    "TriggerSpec",
    "load_suite",
    "parse_suite",
    # Results
    "TestResult",
    "TestResults",
    "TestStatus",
    "ValidationResult",
    "Difference",
    "DiffKind",
    # Differ
    "Differ",
    "find_differences",
    "matches",
    "validate",
    # Virtual Service
    "VirtualService",
    "TriggerSimulator",
    # Subjects
    "ProcessSubject",
    "CallableSubject",
    # Coverage
    "CoverageCollector",
    "CoverageReport",
    "WorkflowCoverage",
    "WorkflowGraph",
    "load_workflow_graph",
    # Errors
    "FlowReplayError",
    "ExecutionError",
    "SubjectTimeoutError",
    "FixtureError",
    "ConfigurationError",
    "SetupError",
    "TeardownError",
    "SuiteLoadError",
    "MaxDepthExceededError",
    "TriggerError",
]

"""Test orchestrator: runs suites against a subject with mocks, validation and coverage."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Iterable, Optional

from .config import RunnerConfig
from .coverage import CoverageCollector, CoverageReport, load_workflow_graph
from .differ import validate
from .events import EventEmitter
from .exceptions import ConfigurationError, FixtureError, SetupError, TeardownError
from .fixtures import FixturePreparer
from .loader import load_suite
from .models import (
    TestCase,
    TestResult,
    TestResults,
    TestStatus,
    TestSuite,
    ValidationResult,
)
from .subject import ProcessSubject, Subject
from .triggers import TriggerSimulator
from .virtual_service import VirtualService

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ("**/*.test.yaml", "**/*.test.yml")


class TestOrchestrator(EventEmitter):
    """
    Runs test suites to completion and produces TestResults.

    Events (listener arguments in parentheses):
        server:started (port), server:stopped (),
        suite:start (suite), suite:bail (suite), suite:error (suite, error),
        suite:teardown-error (error), suite:complete (results),
        test:start (test), test:retry (test, attempt, error), test:complete (result),
        trigger:fired (test, response)

    Results are appended in the order tests settle, which differs from
    declaration order when concurrency > 1. All tests share one virtual
    service; their mock registrations are not isolated from each other when
    they run concurrently.
    """

    __test__ = False

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        subject: Optional[Subject] = None,
        virtual_service: Optional[VirtualService] = None,
        fixtures: Optional[FixturePreparer] = None,
        coverage: Optional[CoverageCollector] = None,
    ):
        super().__init__()
        self.config = config or RunnerConfig()
        self.subject = subject or ProcessSubject()
        self.virtual_service = virtual_service or VirtualService(
            port=self.config.mock_server_port,
            host=self.config.mock_server_host,
        )
        self.fixtures = fixtures or FixturePreparer(self.config.work_dir)
        self.coverage = coverage or CoverageCollector()
        self.coverage_enabled = self.config.coverage
        self._coverage_lock = threading.Lock()

    def enable_coverage(self, enabled: bool = True):
        self.coverage_enabled = enabled

    # Virtual service lifecycle

    def start_virtual_service(self):
        if not self.virtual_service.is_running():
            self.virtual_service.start()
            self.emit("server:started", self.virtual_service.port)

    def stop_virtual_service(self):
        if self.virtual_service.is_running():
            self.virtual_service.stop()
            self.emit("server:stopped")

    # Suites

    def run_suite(self, suite: TestSuite, base_dir: Optional[str] = None) -> TestResults:
        """
        Run every test of a suite.

        Args:
            suite: The suite to run
            base_dir: Directory relative workflow references are resolved against

        Returns:
            TestResults in completion order; partial when bail stopped the suite

        Raises:
            SetupError: the suite setup hook failed
            OSError: the fixture working directory could not be created
        """
        started = time.monotonic()
        results = TestResults(suite=suite.name)

        self.emit("suite:start", suite)
        try:
            self.start_virtual_service()
            self.fixtures.init()
            try:
                if suite.setup is not None:
                    try:
                        suite.setup()
                    except Exception as e:
                        raise SetupError(suite.name, e) from e

                tests = [self._resolve_test(test, suite, base_dir) for test in suite.tests]
                self._dispatch(tests, suite, results)
            finally:
                self._run_teardown(suite)
                self.fixtures.cleanup()
        except Exception as e:
            self.emit("suite:error", suite, e)
            raise
        finally:
            self.stop_virtual_service()

        results.finalize(time.monotonic() - started)
        logger.info("Suite '%s' finished: %d passed, %d failed, %d errors, %d skipped",
                    suite.name, results.passed, results.failed, results.errors, results.skipped)
        self.emit("suite:complete", results)
        return results

    def _resolve_test(self, test: TestCase, suite: TestSuite, base_dir: Optional[str]) -> TestCase:
        workflow = test.workflow or suite.workflow
        if workflow and base_dir and not Path(workflow).is_absolute():
            workflow = str((Path(base_dir) / workflow).resolve())
        if workflow == test.workflow:
            return test
        return dataclasses.replace(test, workflow=workflow)

    def _dispatch(self, tests: list[TestCase], suite: TestSuite, results: TestResults):
        concurrency = max(1, suite.config.concurrency or self.config.concurrency or 1)
        bail = suite.config.bail if suite.config.bail is not None else self.config.bail
        if concurrency > 1:
            logger.warning("Running %d tests at a time against one shared virtual service; "
                           "concurrent tests may see each other's mocks", concurrency)

        pending = deque(tests)
        bailed = False
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="flowreplay-test") as pool:
            in_flight: dict = {}
            while pending or in_flight:
                while pending and not bailed and len(in_flight) < concurrency:
                    test = pending.popleft()
                    in_flight[pool.submit(self.run_one, test, suite)] = test
                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    test = in_flight.pop(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        logger.exception("Test '%s' crashed", test.name)
                        result = TestResult(name=test.name, status=TestStatus.ERROR, duration=0.0, error=str(e))
                    results.add(result)
                    if bail and not bailed and result.status == TestStatus.FAILED:
                        bailed = True
                        logger.info("Bailing out of suite '%s' after '%s' failed; %d test(s) not run",
                                    suite.name, result.name, len(pending))
                        self.emit("suite:bail", suite)

    def _run_teardown(self, suite: TestSuite):
        if suite.teardown is None:
            return
        try:
            suite.teardown()
        except Exception as e:
            error = TeardownError(suite.name, e)
            logger.error("%s", error)
            self.emit("suite:teardown-error", error)

    # Single tests

    def _retries_for(self, test: TestCase, suite: Optional[TestSuite]) -> int:
        if test.retries is not None:
            return int(test.retries)
        if suite is not None and suite.config.retries is not None:
            return int(suite.config.retries)
        return int(self.config.retries or 0)

    def _timeout_for(self, test: TestCase, suite: Optional[TestSuite]) -> Optional[float]:
        if test.timeout is not None:
            return float(test.timeout)
        if suite is not None and suite.config.timeout is not None:
            return float(suite.config.timeout)
        return self.config.timeout

    @staticmethod
    def effective_inputs(test: TestCase) -> dict:
        """Explicit inputs, else the trigger's payload body, else empty."""
        if test.inputs is not None:
            return test.inputs
        if test.trigger is not None and test.trigger.payload is not None:
            return test.trigger.payload
        return {}

    def run_one(self, test: TestCase, suite: Optional[TestSuite] = None) -> TestResult:
        """
        Run a single test with retries on execution errors.

        Validation failures are final and never retried.
        """
        if test.skip:
            result = TestResult(name=test.name, status=TestStatus.SKIPPED, duration=0.0)
            self.emit("test:complete", result)
            return result

        self.emit("test:start", test)
        started = time.monotonic()
        try:
            max_attempts = max(0, self._retries_for(test, suite)) + 1
            timeout = self._timeout_for(test, suite)
        except (TypeError, ValueError) as e:
            error = ConfigurationError(f"Invalid retries or timeout for test '{test.name}': {e}",
                                       {"test": test.name})
            logger.error("%s", error)
            invalid = TestResult(name=test.name, status=TestStatus.ERROR,
                                 duration=time.monotonic() - started, error=str(error))
            self.emit("test:complete", invalid)
            return invalid

        coverage_state: dict = {}
        last_error: Optional[Exception] = None
        result: Optional[TestResult] = None

        attempt = 0
        for attempt in range(1, max_attempts + 1):
            try:
                output, validation = self._attempt(test, suite, timeout, coverage_state)
            except ConfigurationError as e:
                last_error = e
                break
            except Exception as e:
                last_error = e
                logger.warning("Test '%s' attempt %d/%d failed: %s", test.name, attempt, max_attempts, e)
                if attempt < max_attempts:
                    self.emit("test:retry", test, attempt, e)
                    time.sleep(attempt * self.config.retry_delay)
                continue

            result = TestResult(
                name=test.name,
                status=TestStatus.PASSED if validation.passed else TestStatus.FAILED,
                duration=time.monotonic() - started,
                output=output,
                validation=validation,
                retries=attempt - 1,
            )
            break

        if result is None:
            result = TestResult(
                name=test.name,
                status=TestStatus.ERROR,
                duration=time.monotonic() - started,
                error=str(last_error) if last_error else "Unknown error",
                retries=attempt - 1,
            )

        workflow_id = coverage_state.get("workflow_id")
        if workflow_id is not None:
            with self._coverage_lock:
                self.coverage.end_workflow(workflow_id)

        self.emit("test:complete", result)
        return result

    def _attempt(self, test: TestCase, suite: Optional[TestSuite], timeout: Optional[float], coverage_state: dict):
        if not test.workflow:
            raise ConfigurationError("No workflow path specified for test", {"test": test.name})

        try:
            self.virtual_service.register_mocks(test.mocks)

            if self.coverage_enabled and "workflow_id" not in coverage_state:
                coverage_state["workflow_id"] = self._start_coverage(test.workflow)

            inputs = self.effective_inputs(test)
            fixture = self.fixtures.prepare(
                test.workflow,
                inputs,
                test.mocks,
                test.trigger,
                test.expected_outputs,
                test.name,
            )

            coverage_file = None
            if self.coverage_enabled:
                coverage_file = self.fixtures.work_dir / f".coverage-{uuid.uuid4().hex[:12]}.json"

            simulator = None
            try:
                if test.trigger is not None and test.trigger.fire:
                    simulator = TriggerSimulator(self.virtual_service.base_url)
                    self.emit("trigger:fired", test, simulator.fire(test.trigger))

                output = self.subject.invoke(
                    fixture,
                    self._subject_env(suite, coverage_file),
                    timeout,
                )
                if coverage_file is not None:
                    self._record_coverage(coverage_state["workflow_id"], coverage_file)
            finally:
                if simulator is not None:
                    if test.trigger.auto_cleanup:
                        simulator.cleanup()
                    simulator.close()
                fixture.unlink(missing_ok=True)
                if coverage_file is not None:
                    coverage_file.unlink(missing_ok=True)
        finally:
            self.virtual_service.clear_mocks()

        if test.expected_outputs is not None:
            validation = validate(output, test.expected_outputs)
        else:
            validation = ValidationResult(passed=True, actual=output)
        return output, validation

    def _subject_env(self, suite: Optional[TestSuite], coverage_file: Optional[Path]) -> dict[str, str]:
        env = dict(self.config.environment)
        if suite is not None:
            env.update(suite.config.environment)
        env["FLOWREPLAY_TEST_MODE"] = "true"
        env["FLOWREPLAY_MOCK_SERVER_URL"] = self.virtual_service.base_url
        if coverage_file is not None:
            env["FLOWREPLAY_COVERAGE_FILE"] = str(coverage_file)
        return env

    # Coverage

    def _start_coverage(self, workflow_path: str) -> str:
        try:
            graph = load_workflow_graph(workflow_path)
        except (OSError, ValueError) as e:
            raise FixtureError(workflow_path, str(e))
        with self._coverage_lock:
            self.coverage.start_workflow(graph)
        return graph.id

    def _record_coverage(self, workflow_id: str, coverage_file: Path):
        if not coverage_file.exists():
            logger.debug("Subject wrote no coverage file for %s", workflow_id)
            return
        try:
            data = json.loads(coverage_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable coverage file %s: %s", coverage_file, e)
            return

        with self._coverage_lock:
            for node in data.get("executedNodes") or []:
                self.coverage.record_node_execution(
                    node["nodeId"], is_error=bool(node.get("error")), workflow_id=workflow_id
                )
            for conn in data.get("executedConnections") or []:
                self.coverage.record_edge_execution(conn["from"], conn["to"], workflow_id=workflow_id)

    def get_coverage(self) -> CoverageReport:
        return self.coverage.get_coverage()

    def save_coverage(self, output_path: str):
        self.coverage.save(output_path)

    def load_coverage(self, input_path: str):
        self.coverage.load(input_path)

    # Files

    def run_file(self, path: str) -> TestResults:
        """Load a suite file and run it with workflows resolved against its directory."""
        suite = load_suite(path)
        return self.run_suite(suite, base_dir=str(Path(path).resolve().parent))

    def run_all(self, patterns: Iterable[str] | str = DEFAULT_PATTERNS, root: str = ".") -> TestResults:
        """
        Run every suite file matched by the given paths or glob patterns.

        Returns:
            One aggregate TestResults named 'All Tests'
        """
        if isinstance(patterns, str):
            patterns = [p.strip() for p in patterns.split(",")]

        files: list[str] = []
        for pattern in patterns:
            candidate = Path(root) / pattern
            if candidate.is_file():
                files.append(str(candidate))
            else:
                files.extend(str(p) for p in sorted(Path(root).glob(pattern)))

        logger.debug("Found test files: %s", files)

        started = time.monotonic()
        aggregate = TestResults(suite="All Tests")
        for file in files:
            aggregate.merge(self.run_file(file))
        aggregate.duration = time.monotonic() - started
        return aggregate


def run_tests(
    patterns: Iterable[str] | str = DEFAULT_PATTERNS,
    config: Optional[RunnerConfig] = None,
    root: str = ".",
    print_report: bool = True,
) -> TestResults:
    """
    Run test suite files in one call.

        from flowreplay import run_tests
        results = run_tests("tests/*.test.yaml")

    Returns:
        Aggregate TestResults; results.success is False on any failure or error
    """
    orchestrator = TestOrchestrator(config or RunnerConfig.from_env())
    results = orchestrator.run_all(patterns, root=root)
    if print_report:
        results.print_summary()
    return results

"""Tests for suite loading and runner configuration."""

import json

import pytest
import yaml
from flowreplay import RunnerConfig, SuiteLoadError, load_suite, parse_suite
from flowreplay.loader import format_expected_output
from flowreplay.models import LogLevel


FULL_SUITE = """
name: Order sync
workflow: ./order-sync.json
config:
  timeout: 5s
  retries: 2
  bail: true
  environment:
    API_KEY: test-key
tests:
  - name: creates order
    inputs:
      orderId: 42
    expectedOutputs:
      - json:
          status: created
    mocks:
      - nodeType: n8n-nodes-base.httpRequest
        url: https://api.example.com/orders
        method: post
        delay: 250
        response:
          id: 42
        scenarios:
          - when: "$.body.priority == 'high'"
            response:
              id: 42
              fastTrack: true
  - name: webhook triggered
    trigger:
      webhook:
        body:
          event: order.created
    skip: true
"""

SIMPLE_SUITE = """
test: Notifications
workflow: notify.json
cases:
  - name: sends email
    input:
      to: ops@example.com
    mocks:
      Send Email:
        accepted: true
    expect:
      sent: true
  - name: nightly run
    trigger:
      type: schedule
      config:
        cron: "0 0 * * *"
    expect:
      - sent: false
"""


class TestFullFormat:
    """Test the name/tests suite format."""

    def setup_method(self):
        self.suite = parse_suite(yaml.safe_load(FULL_SUITE), "suites/order.test.yaml")

    def test_suite_fields(self):
        """Test that suite name, workflow and tests are read."""
        assert self.suite.name == "Order sync"
        assert self.suite.workflow == "./order-sync.json"
        assert len(self.suite.tests) == 2

    def test_suite_config(self):
        """Test that suite config durations and flags are parsed."""
        config = self.suite.config
        assert config.timeout == 5.0
        assert config.retries == 2
        assert config.bail is True
        assert config.concurrency is None
        assert config.environment == {"API_KEY": "test-key"}

    def test_mock_parsing(self):
        """Test that mock fields and scenarios are parsed."""
        mock = self.suite.tests[0].mocks[0]
        assert mock.node_type == "n8n-nodes-base.httpRequest"
        assert mock.method == "post"
        assert mock.delay == 0.25
        assert mock.response == {"id": 42}
        assert mock.scenarios[0].condition == "$.body.priority == 'high'"
        assert mock.scenarios[0].response["fastTrack"] is True

    def test_short_trigger_form(self):
        """Test that the short trigger form is parsed."""
        test = self.suite.tests[1]
        assert test.skip is True
        assert test.trigger.type == "webhook"
        assert test.trigger.payload == {"event": "order.created"}
        assert test.inputs is None

    def test_missing_tests_key(self):
        """Test that a suite without tests or cases is rejected."""
        with pytest.raises(SuiteLoadError, match="expected 'tests' or 'cases'"):
            parse_suite({"name": "empty"}, "x.yaml")

    def test_test_without_name(self):
        """Test that a test without a name is rejected."""
        with pytest.raises(SuiteLoadError, match="missing 'name'"):
            parse_suite({"tests": [{"inputs": {}}]}, "x.yaml")

    def test_invalid_retries(self):
        """Test that a non-numeric retry count is rejected at load time."""
        with pytest.raises(SuiteLoadError, match="Invalid test file x.yaml"):
            parse_suite({"tests": [{"name": "ok"}, {"name": "bad", "retries": "two"}]}, "x.yaml")

    def test_retries_are_coerced_to_int(self):
        """Test that a numeric string retry count becomes an int."""
        suite = parse_suite({"tests": [{"name": "t", "retries": "3"}, {"name": "u", "retries": None}]}, "x.yaml")
        assert suite.tests[0].retries == 3
        assert suite.tests[1].retries is None

    def test_trigger_delivery_flags(self):
        """Test that fire and autoCleanup are read from either trigger form."""
        suite = parse_suite({"tests": [
            {"name": "short", "trigger": {"fire": True, "webhook": {"path": "orders"}}},
            {"name": "full", "trigger": {"type": "email", "fire": True, "autoCleanup": False,
                                         "config": {"subject": "Hi"}}},
        ]}, "x.yaml")
        short, full = (test.trigger for test in suite.tests)
        assert (short.type, short.fire, short.auto_cleanup) == ("webhook", True, True)
        assert short.config == {"path": "orders"}
        assert (full.type, full.fire, full.auto_cleanup) == ("email", True, False)
        assert self.suite.tests[1].trigger.fire is False

    def test_trigger_without_type(self):
        """Test that a trigger holding only delivery flags is rejected."""
        with pytest.raises(SuiteLoadError, match="missing its type"):
            parse_suite({"tests": [{"name": "t", "trigger": {"fire": True}}]}, "x.yaml")


class TestSimpleFormat:
    """Test the test/cases suite format."""

    def test_cases_with_node_name_mocks(self, tmp_path):
        """Test that node-name mocks take their type from the workflow."""
        (tmp_path / "notify.json").write_text(json.dumps({
            "nodes": [{"name": "Send Email", "type": "n8n-nodes-base.emailSend"}],
            "connections": {},
        }))
        path = tmp_path / "notify.test.yaml"
        path.write_text(SIMPLE_SUITE)

        suite = load_suite(str(path))
        assert suite.name == "Notifications"
        assert suite.workflow == "notify.json"

        first = suite.tests[0]
        assert first.inputs == {"to": "ops@example.com"}
        assert first.expected_outputs == [{"json": {"sent": True}}]
        assert first.mocks[0].node_name == "Send Email"
        assert first.mocks[0].node_type == "n8n-nodes-base.emailSend"
        assert first.mocks[0].response == {"accepted": True}

    def test_schedule_trigger_defaults_inputs(self, tmp_path):
        """Test that a schedule trigger supplies default inputs."""
        path = tmp_path / "notify.test.yaml"
        path.write_text(SIMPLE_SUITE)

        second = load_suite(str(path)).tests[1]
        assert second.inputs == {"trigger": "schedule", "cron": "0 0 * * *"}
        assert second.expected_outputs == [{"json": {"sent": False}}]

    def test_unknown_workflow_node_types(self, tmp_path):
        """Test that mocks get an unknown type when the workflow is missing."""
        path = tmp_path / "notify.test.yaml"
        path.write_text(SIMPLE_SUITE)
        assert load_suite(str(path)).tests[0].mocks[0].node_type == "unknown"

    def test_no_cases(self):
        """Test that an empty cases list is rejected."""
        with pytest.raises(SuiteLoadError, match="no test cases"):
            parse_suite({"test": "Empty", "cases": []}, "x.yaml")

    def test_invalid_case_retries(self):
        """Test that a non-numeric retry count in a case is rejected at load time."""
        with pytest.raises(SuiteLoadError):
            parse_suite({"test": "Bad", "cases": [{"name": "bad", "retries": "two"}]}, "x.yaml")


class TestLoadSuite:
    """Test reading suite files."""

    def test_json_suite(self, tmp_path):
        """Test that JSON suite files load."""
        path = tmp_path / "suite.json"
        path.write_text(json.dumps({"name": "JSON suite", "tests": [{"name": "t1"}]}))
        suite = load_suite(str(path))
        assert suite.name == "JSON suite"
        assert suite.tests[0].name == "t1"

    def test_missing_file(self, tmp_path):
        """Test that a missing suite file raises SuiteLoadError."""
        with pytest.raises(SuiteLoadError, match="file not found"):
            load_suite(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        """Test that unparseable YAML raises SuiteLoadError."""
        path = tmp_path / "bad.yaml"
        path.write_text("name: [unclosed")
        with pytest.raises(SuiteLoadError, match="failed to parse"):
            load_suite(str(path))

    def test_name_defaults_to_file_stem(self, tmp_path):
        """Test that an unnamed suite is named after its file."""
        path = tmp_path / "checkout.yaml"
        path.write_text("tests:\n  - name: a\n")
        assert load_suite(str(path)).name == "checkout"


class TestFormatExpectedOutput:
    """Test normalisation of expect blocks."""

    def test_object(self):
        """Test that an object is wrapped as a single item."""
        assert format_expected_output({"a": 1}) == [{"json": {"a": 1}}]

    def test_list_of_objects(self):
        """Test that each object in a list is wrapped."""
        assert format_expected_output([{"a": 1}, {"a": 2}]) == [{"json": {"a": 1}}, {"json": {"a": 2}}]

    def test_already_wrapped(self):
        """Test that wrapped items are left alone."""
        wrapped = [{"json": {"a": 1}}]
        assert format_expected_output(wrapped) == wrapped


class TestRunnerConfig:
    """Test runner configuration sources."""

    def test_defaults(self):
        """Test the default runner settings."""
        config = RunnerConfig()
        assert config.concurrency == 1
        assert config.timeout == 30.0
        assert config.retries == 0
        assert config.bail is False
        assert config.mock_server_port == 3456

    def test_from_dict(self):
        """Test that settings are read from a camelCase dict."""
        config = RunnerConfig.from_dict({
            "concurrency": 4,
            "timeout": 1500,
            "retryDelay": "2s",
            "mockServerPort": 0,
            "logLevel": "debug",
        })
        assert config.concurrency == 4
        assert config.timeout == 1.5
        assert config.retry_delay == 2.0
        assert config.mock_server_port == 0
        assert config.log_level == LogLevel.DEBUG

    def test_from_env(self):
        """Test that settings are read from FLOWREPLAY_ environment variables."""
        config = RunnerConfig.from_env({
            "FLOWREPLAY_TIMEOUT": "250ms",
            "FLOWREPLAY_RETRIES": "3",
            "FLOWREPLAY_BAIL": "true",
            "FLOWREPLAY_COVERAGE": "0",
            "UNRELATED": "x",
        })
        assert config.timeout == 0.25
        assert config.retries == 3
        assert config.bail is True
        assert config.coverage is False

    def test_invalid_duration(self):
        """Test that an unparseable duration is rejected."""
        with pytest.raises(ValueError, match="Invalid duration"):
            RunnerConfig.from_dict({"timeout": "soon"})

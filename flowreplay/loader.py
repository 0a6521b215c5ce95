"""Loading of test suites from YAML or JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import SuiteLoadError
from .models import (
    MockRule,
    MockScenario,
    SuiteConfig,
    TestCase,
    TestSuite,
    TriggerSpec,
)
from .utils import to_seconds

logger = logging.getLogger(__name__)


def format_expected_output(expect: Any) -> list:
    """Normalize an 'expect' block into a list of {json: ...} items."""
    if not isinstance(expect, list):
        return [{"json": expect}]
    if expect and isinstance(expect[0], dict) and "json" in expect[0]:
        return expect
    return [{"json": item} for item in expect]


def parse_suite_config(data: Optional[dict]) -> SuiteConfig:
    data = data or {}
    return SuiteConfig(
        concurrency=int(data["concurrency"]) if "concurrency" in data else None,
        timeout=to_seconds(data.get("timeout")),
        retries=int(data["retries"]) if "retries" in data else None,
        bail=bool(data["bail"]) if "bail" in data else None,
        environment={str(k): str(v) for k, v in (data.get("environment") or {}).items()},
    )


def parse_mock(data: dict) -> MockRule:
    scenarios = [
        MockScenario(condition=s.get("when", s.get("condition")), response=s.get("response"))
        for s in data.get("scenarios") or []
    ]
    return MockRule(
        node_type=data.get("nodeType", "http"),
        node_name=data.get("nodeName"),
        method=data.get("method"),
        url=data.get("url"),
        path=data.get("path"),
        response=data.get("response"),
        delay=to_seconds(data.get("delay")) or 0.0,
        scenarios=scenarios,
    )


def parse_trigger(data: Any) -> Optional[TriggerSpec]:
    """Accept {type, nodeName, config} or the short form {webhook: {...}}."""
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"trigger must be a mapping, got {type(data).__name__}")

    data = dict(data)
    fire = bool(data.pop("fire", False))
    auto_cleanup = bool(data.pop("autoCleanup", True))
    if "type" in data:
        return TriggerSpec(type=data["type"], node_name=data.get("nodeName"),
                           config=data.get("config") or {}, fire=fire, auto_cleanup=auto_cleanup)
    if not data:
        raise ValueError("trigger is missing its type")
    trigger_type = next(iter(data))
    return TriggerSpec(type=trigger_type, config=data[trigger_type] or {},
                       fire=fire, auto_cleanup=auto_cleanup)


def parse_test(data: dict) -> TestCase:
    """Parse a test in the full format (name/inputs/expectedOutputs/mocks)."""
    if "name" not in data:
        raise ValueError("test case is missing 'name'")
    return TestCase(
        name=str(data["name"]),
        workflow=data.get("workflow"),
        inputs=data.get("inputs"),
        expected_outputs=data.get("expectedOutputs"),
        mocks=[parse_mock(m) for m in data.get("mocks") or []],
        timeout=to_seconds(data.get("timeout")),
        retries=int(data["retries"]) if data.get("retries") is not None else None,
        skip=bool(data.get("skip", False)),
        trigger=parse_trigger(data.get("trigger")),
    )


def _node_types(workflow_path: Optional[Path]) -> dict[str, str]:
    if workflow_path is None or not workflow_path.exists():
        return {}
    try:
        workflow = json.loads(workflow_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return {n.get("name"): n.get("type", "unknown") for n in workflow.get("nodes") or []}


def parse_case(data: dict, node_types: dict[str, str]) -> TestCase:
    """Parse a test in the simple format (name/input/expect/mocks by node name)."""
    if "name" not in data:
        raise ValueError("test case is missing 'name'")

    mocks_data = data.get("mocks") or []
    if isinstance(mocks_data, dict):
        mocks = [
            MockRule(node_type=node_types.get(node_name, "unknown"), node_name=node_name, response=response)
            for node_name, response in mocks_data.items()
        ]
    else:
        mocks = [parse_mock(m) for m in mocks_data]

    trigger = parse_trigger(data.get("trigger"))
    inputs = data.get("input")
    if inputs is None and trigger is not None and trigger.type == "schedule":
        inputs = {"trigger": "schedule", **trigger.config}

    return TestCase(
        name=str(data["name"]),
        workflow=data.get("workflow"),
        inputs=inputs,
        expected_outputs=format_expected_output(data["expect"]) if "expect" in data else None,
        mocks=mocks,
        timeout=to_seconds(data.get("timeout")),
        retries=int(data["retries"]) if data.get("retries") is not None else None,
        skip=bool(data.get("skip", False)),
        trigger=trigger,
    )


def parse_suite(data: dict, source: str = "<memory>") -> TestSuite:
    """Build a TestSuite from a parsed suite document."""
    if not isinstance(data, dict):
        raise SuiteLoadError(source, "suite must be a mapping")

    base_dir = Path(source).parent if source != "<memory>" else None

    try:
        if "cases" in data or "test" in data:
            if not data.get("cases"):
                raise ValueError(f"Test suite \"{data.get('test')}\" has no test cases defined")
            workflow = data.get("workflow")
            workflow_path = None
            if workflow:
                workflow_path = Path(workflow)
                if not workflow_path.is_absolute() and base_dir is not None:
                    workflow_path = base_dir / workflow_path
            node_types = _node_types(workflow_path)
            return TestSuite(
                name=str(data.get("test") or Path(source).stem),
                workflow=workflow,
                tests=[parse_case(c, node_types) for c in data["cases"]],
                config=parse_suite_config(data.get("config")),
            )

        if "tests" not in data:
            raise ValueError("expected 'tests' or 'cases'")
        return TestSuite(
            name=str(data.get("name") or Path(source).stem),
            workflow=data.get("workflow"),
            tests=[parse_test(t) for t in data["tests"] or []],
            config=parse_suite_config(data.get("config")),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SuiteLoadError(source, str(e))


def load_suite(path: str) -> TestSuite:
    """Load a suite from a YAML or JSON file (JSON is parsed as YAML)."""
    suite_path = Path(path)
    if not suite_path.exists():
        raise SuiteLoadError(str(path), "file not found")

    try:
        data = yaml.safe_load(suite_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SuiteLoadError(str(path), f"failed to parse: {e}")

    suite = parse_suite(data, str(suite_path))
    logger.debug("Loaded suite '%s' with %d test(s) from %s", suite.name, len(suite.tests), path)
    return suite

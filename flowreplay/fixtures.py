"""Preparation of isolated, runnable workflow copies for each test."""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Optional

from .exceptions import FixtureError
from .models import MockRule, TriggerSpec
from .utils import deep_copy

logger = logging.getLogger(__name__)

FIXTURE_KEY = "__flowreplay"

# Trigger type -> node kinds that receive the trigger payload
TRIGGER_NODE_KINDS = {
    "webhook": ("webhook", "webhookTrigger"),
    "schedule": ("scheduleTrigger", "cron", "interval"),
    "email": ("emailReadImap", "emailTrigger"),
    "filesystem": ("localFileTrigger",),
}


def _mock_to_dict(rule: MockRule) -> dict:
    data: dict[str, Any] = {"nodeType": rule.node_type}
    if rule.node_name:
        data["nodeName"] = rule.node_name
    if rule.method:
        data["method"] = rule.method
    if rule.url:
        data["url"] = rule.url
    if rule.path:
        data["path"] = rule.path
    if not callable(rule.response):
        data["response"] = rule.response
    if rule.delay:
        data["delay"] = rule.delay
    return data


class FixturePreparer:
    """
    Writes a copy of a workflow carrying one test's data into a working
    directory. The copy is what the subject executes; the original file is
    never modified.
    """

    def __init__(self, work_dir: str = ".flowreplay-temp"):
        self.work_dir = Path(work_dir)

    def init(self):
        """Create the working directory. Failures propagate to the caller."""
        self.work_dir.mkdir(parents=True, exist_ok=True)

    def cleanup(self):
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)

    def _load(self, workflow_path: str) -> dict:
        try:
            content = Path(workflow_path).read_text(encoding="utf-8")
        except OSError as e:
            raise FixtureError(workflow_path, f"cannot read file: {e}")

        if not content.strip():
            raise FixtureError(workflow_path, "file is empty")

        try:
            workflow = json.loads(content)
        except ValueError as e:
            raise FixtureError(workflow_path, f"invalid JSON: {e}")

        if not isinstance(workflow, dict):
            raise FixtureError(workflow_path, "workflow must be a JSON object")
        return workflow

    def prepare(
        self,
        workflow_path: str,
        inputs: Optional[dict] = None,
        mocks: Optional[list[MockRule]] = None,
        trigger: Optional[TriggerSpec] = None,
        expected_outputs: Optional[list] = None,
        test_name: Optional[str] = None,
    ) -> Path:
        """
        Produce a runnable copy of the workflow for one test.

        Returns:
            Path of the prepared copy inside the working directory
        """
        workflow = deep_copy(self._load(workflow_path))

        workflow[FIXTURE_KEY] = {
            "testName": test_name,
            "sourcePath": str(workflow_path),
            "inputs": inputs if inputs is not None else {},
            "mocks": [_mock_to_dict(m) for m in mocks or []],
            "trigger": {
                "type": trigger.type,
                "nodeName": trigger.node_name,
                "config": trigger.config,
            } if trigger else None,
            "expectedOutput": expected_outputs,
        }

        if trigger is not None:
            kinds = TRIGGER_NODE_KINDS.get(trigger.type, ())
            for node in workflow.get("nodes") or []:
                kind = str(node.get("type", "")).rsplit(".", 1)[-1]
                if kind in kinds or (trigger.node_name and node.get("name") == trigger.node_name):
                    node.setdefault("parameters", {})["__triggerData"] = trigger.config

        target = self.work_dir / f"test-workflow-{uuid.uuid4().hex[:12]}.json"
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(workflow, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise FixtureError(workflow_path, f"cannot write fixture: {e}")

        logger.debug("Prepared fixture %s for %s", target, test_name or workflow_path)
        return target

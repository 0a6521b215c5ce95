"""Invocation of the workflow under test."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from .exceptions import ExecutionError, SubjectTimeoutError

logger = logging.getLogger(__name__)

WORKFLOW_PLACEHOLDER = "{workflow}"
SUBJECT_CMD_ENV = "FLOWREPLAY_SUBJECT_CMD"


class Subject(Protocol):
    def invoke(self, workflow_path: Path, env: Mapping[str, str], timeout: Optional[float]) -> Any: ...


def _parse_output(stdout: str) -> Any:
    text = stdout.strip()
    if not text:
        raise ExecutionError("Subject produced no output")
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Tolerate log lines before the JSON document
    last_line = text.splitlines()[-1]
    try:
        return json.loads(last_line)
    except ValueError as e:
        raise ExecutionError(f"Subject output is not valid JSON: {e}", {"stdout": text[-2000:]})


class ProcessSubject:
    """
    Runs the workflow as an external process and reads its JSON output.

    The command is a template; '{workflow}' is replaced with the prepared
    workflow path, or the path is appended when the placeholder is absent.
    """

    def __init__(self, command: Optional[Sequence[str] | str] = None):
        if command is None:
            command = os.environ.get(SUBJECT_CMD_ENV) or [
                sys.executable, "-m", "flowreplay.replay", "--file", WORKFLOW_PLACEHOLDER,
            ]
        if isinstance(command, str):
            command = shlex.split(command)
        self.command = list(command)

    def build_args(self, workflow_path: Path) -> list[str]:
        if any(WORKFLOW_PLACEHOLDER in part for part in self.command):
            return [part.replace(WORKFLOW_PLACEHOLDER, str(workflow_path)) for part in self.command]
        return self.command + [str(workflow_path)]

    def invoke(self, workflow_path: Path, env: Mapping[str, str], timeout: Optional[float]) -> Any:
        args = self.build_args(workflow_path)
        logger.debug("Invoking subject: %s", args)
        try:
            completed = subprocess.run(
                args,
                env={**os.environ, **env},
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise SubjectTimeoutError(timeout)
        except OSError as e:
            raise ExecutionError(f"Failed to start subject: {e}", {"command": args})

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            raise ExecutionError(
                f"Workflow execution failed (exit code {completed.returncode}): {stderr}",
                {"exit_code": completed.returncode},
            )

        return _parse_output(completed.stdout)


class CallableSubject:
    """
    Runs a Python callable as the subject.

    The callable receives (workflow_path, env) and returns the output value.
    It runs on a daemon thread; on timeout the thread is abandoned, not
    stopped.
    """

    def __init__(self, fn: Callable[[Path, Mapping[str, str]], Any]):
        self.fn = fn

    def invoke(self, workflow_path: Path, env: Mapping[str, str], timeout: Optional[float]) -> Any:
        outcome: dict[str, Any] = {}

        def target():
            try:
                outcome["value"] = self.fn(workflow_path, env)
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=target, name="flowreplay-subject", daemon=True)
        thread.start()
        thread.join(timeout)

        if thread.is_alive():
            raise SubjectTimeoutError(timeout)

        error = outcome.get("error")
        if error is not None:
            if isinstance(error, ExecutionError):
                raise error
            raise ExecutionError(f"Workflow execution failed: {error}") from error

        return outcome.get("value")

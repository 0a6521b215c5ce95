"""Tests for fixture preparation, subjects and the replay entry point."""

import json
import sys

import pytest
from flowreplay import CallableSubject, ExecutionError, FixtureError, MockRule, ProcessSubject, TriggerSpec
from flowreplay.exceptions import SubjectTimeoutError
from flowreplay.fixtures import FIXTURE_KEY, FixturePreparer
from flowreplay.replay import main as replay_main
from flowreplay.replay import replay_output


WORKFLOW = {
    "id": "wf-1",
    "nodes": [
        {"id": "n1", "name": "Incoming", "type": "n8n-nodes-base.webhook", "parameters": {"path": "in"}},
        {"id": "n2", "name": "Process", "type": "n8n-nodes-base.set"},
    ],
    "connections": {"Incoming": {"main": [[{"node": "Process"}]]}},
}


class TestFixturePreparer:
    """Test runnable workflow copies."""

    def write_workflow(self, tmp_path, content):
        path = tmp_path / "wf.json"
        path.write_text(content if isinstance(content, str) else json.dumps(content))
        return str(path)

    def test_prepare_embeds_test_data(self, tmp_path):
        """Test that the prepared copy carries the test's data and the original is untouched."""
        source = self.write_workflow(tmp_path, WORKFLOW)
        preparer = FixturePreparer(str(tmp_path / "work"))
        preparer.init()

        target = preparer.prepare(
            source,
            inputs={"a": 1},
            mocks=[MockRule(node_type="n8n-nodes-base.httpRequest", url="https://x.test/a", response={"ok": 1})],
            expected_outputs=[{"json": {"a": 1}}],
            test_name="embeds",
        )

        prepared = json.loads(target.read_text())
        data = prepared[FIXTURE_KEY]
        assert data["testName"] == "embeds"
        assert data["inputs"] == {"a": 1}
        assert data["mocks"][0]["url"] == "https://x.test/a"
        assert data["expectedOutput"] == [{"json": {"a": 1}}]
        assert target.parent == tmp_path / "work"
        assert FIXTURE_KEY not in json.loads((tmp_path / "wf.json").read_text())

    def test_trigger_data_injected_into_trigger_node(self, tmp_path):
        """Test that trigger data is set on the matching trigger node only."""
        source = self.write_workflow(tmp_path, WORKFLOW)
        preparer = FixturePreparer(str(tmp_path / "work"))
        trigger = TriggerSpec(type="webhook", config={"body": {"event": "x"}})

        prepared = json.loads(preparer.prepare(source, trigger=trigger).read_text())
        incoming, process = prepared["nodes"]
        assert incoming["parameters"]["__triggerData"] == {"body": {"event": "x"}}
        assert incoming["parameters"]["path"] == "in"
        assert "parameters" not in process

    def test_each_prepare_gets_unique_file(self, tmp_path):
        """Test that every prepare writes a new file."""
        source = self.write_workflow(tmp_path, WORKFLOW)
        preparer = FixturePreparer(str(tmp_path / "work"))
        assert preparer.prepare(source) != preparer.prepare(source)

    @pytest.mark.parametrize("content,reason", [
        ("", "file is empty"),
        ("{not json", "invalid JSON"),
        ("[1, 2]", "must be a JSON object"),
    ])
    def test_invalid_workflows(self, tmp_path, content, reason):
        """Test that unusable workflow files raise FixtureError."""
        source = self.write_workflow(tmp_path, content)
        with pytest.raises(FixtureError, match=reason):
            FixturePreparer(str(tmp_path / "work")).prepare(source)

    def test_missing_workflow(self, tmp_path):
        """Test that a missing workflow file raises FixtureError."""
        with pytest.raises(FixtureError, match="cannot read file"):
            FixturePreparer(str(tmp_path / "work")).prepare(str(tmp_path / "missing.json"))

    def test_cleanup(self, tmp_path):
        """Test that cleanup removes the work directory and can run twice."""
        preparer = FixturePreparer(str(tmp_path / "work"))
        preparer.init()
        preparer.cleanup()
        assert not (tmp_path / "work").exists()
        preparer.cleanup()


class TestSubjects:
    """Test subject invocation."""

    def test_process_subject_reads_json_output(self, tmp_path):
        """Test that the last stdout line is parsed as the output."""
        subject = ProcessSubject([sys.executable, "-c", "print('log line'); print('[{\"json\": {\"ok\": true}}]')"])
        assert subject.invoke(tmp_path / "wf.json", {}, 10) == [{"json": {"ok": True}}]

    def test_process_subject_appends_path_without_placeholder(self):
        """Test that the workflow path is appended when the command has no placeholder."""
        subject = ProcessSubject(["runner", "--flag"])
        assert subject.build_args("wf.json") == ["runner", "--flag", "wf.json"]

    def test_process_subject_string_command(self):
        """Test that a string command is split and the placeholder filled."""
        subject = ProcessSubject("runner execute --file={workflow}")
        assert subject.build_args("wf.json") == ["runner", "execute", "--file=wf.json"]

    def test_process_subject_non_zero_exit(self, tmp_path):
        """Test that a non-zero exit raises ExecutionError."""
        subject = ProcessSubject([sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"])
        with pytest.raises(ExecutionError, match="exit code 3"):
            subject.invoke(tmp_path / "wf.json", {}, 10)

    def test_process_subject_timeout(self, tmp_path):
        """Test that a slow process raises SubjectTimeoutError."""
        subject = ProcessSubject([sys.executable, "-c", "import time; time.sleep(5)"])
        with pytest.raises(SubjectTimeoutError, match="timed out"):
            subject.invoke(tmp_path / "wf.json", {}, 0.2)

    def test_process_subject_invalid_output(self, tmp_path):
        """Test that non-JSON output raises ExecutionError."""
        subject = ProcessSubject([sys.executable, "-c", "print('not json')"])
        with pytest.raises(ExecutionError, match="not valid JSON"):
            subject.invoke(tmp_path / "wf.json", {}, 10)

    def test_callable_subject_wraps_errors(self, tmp_path):
        """Test that callable failures are wrapped in ExecutionError."""
        def fail(path, env):
            raise KeyError("missing")

        with pytest.raises(ExecutionError, match="Workflow execution failed"):
            CallableSubject(fail).invoke(tmp_path / "wf.json", {}, 1)


class TestReplay:
    """Test the replay entry point."""

    def test_expected_output_wins(self):
        """Test that replay returns the expected output when one is embedded."""
        workflow = {FIXTURE_KEY: {"inputs": {"a": 1}, "expectedOutput": [{"json": {"b": 2}}]}}
        assert replay_output(workflow) == [{"json": {"b": 2}}]

    def test_inputs_echoed(self):
        """Test that replay echoes the inputs without an expected output."""
        assert replay_output({FIXTURE_KEY: {"inputs": {"a": 1}}}) == [{"json": {"a": 1}}]

    def test_default_output(self):
        """Test that replay returns a success item without test data."""
        output = replay_output({})
        assert output[0]["json"]["success"] is True

    def test_main_writes_coverage(self, tmp_path, monkeypatch, capsys):
        """Test that the entry point prints output and writes a coverage trace."""
        workflow_path = tmp_path / "wf.json"
        workflow_path.write_text(json.dumps(WORKFLOW))
        coverage_path = tmp_path / "trace.json"
        monkeypatch.setenv("FLOWREPLAY_COVERAGE_FILE", str(coverage_path))

        assert replay_main(["--file", str(workflow_path)]) == 0

        trace = json.loads(coverage_path.read_text())
        assert [n["nodeId"] for n in trace["executedNodes"]] == ["n1", "n2"]
        assert json.loads(capsys.readouterr().out)[0]["json"]["success"] is True

    def test_main_missing_file(self, tmp_path):
        """Test that the entry point fails for a missing workflow."""
        assert replay_main(["--file", str(tmp_path / "missing.json")]) == 1

"""Example usage of the flowreplay test orchestrator."""

import json
import tempfile
from pathlib import Path

import httpx
from flowreplay import (
    CallableSubject,
    MockRule,
    RunnerConfig,
    TestCase,
    TestOrchestrator,
    TestSuite,
    configure_logging,
)

# Workflow definition: webhook -> fetch user -> notify
workflow = {
    "id": "user-notify",
    "name": "User Notify",
    "nodes": [
        {"id": "1", "name": "Webhook", "type": "n8n-nodes-base.webhook"},
        {"id": "2", "name": "Fetch User", "type": "n8n-nodes-base.httpRequest"},
        {"id": "3", "name": "Send Email", "type": "n8n-nodes-base.emailSend"},
    ],
    "connections": {
        "Webhook": {"main": [[{"node": "Fetch User", "type": "main", "index": 0}]]},
        "Fetch User": {"main": [[{"node": "Send Email", "type": "main", "index": 0}]]},
    },
}


def run_workflow(workflow_path, env):
    """Stand-in for a workflow engine: calls the mocked services and reports a trace."""
    base_url = env["FLOWREPLAY_MOCK_SERVER_URL"]
    user = httpx.get(f"{base_url}/users/1").json()
    sent = httpx.post(f"{base_url}/smtp/send", json={"to": user["email"]}).json()

    Path(env["FLOWREPLAY_COVERAGE_FILE"]).write_text(json.dumps({
        "executedNodes": [{"nodeId": "1"}, {"nodeId": "2"}, {"nodeId": "3"}],
        "executedConnections": [{"from": "1", "to": "2"}, {"from": "2", "to": "3"}],
    }))
    return [{"json": {"user": user, "messageId": sent["messageId"]}}]


work = Path(tempfile.mkdtemp())
workflow_path = work / "user-notify.json"
workflow_path.write_text(json.dumps(workflow))

mocks = [
    MockRule(
        node_type="n8n-nodes-base.httpRequest",
        node_name="Fetch User",
        url="https://api.example.com/users/1",
        response={"id": 1, "name": "Ada", "email": "ada@example.com"},
    ),
    MockRule(node_type="n8n-nodes-base.emailSend", node_name="Send Email"),
]

suite = TestSuite(
    name="User Notify",
    workflow=str(workflow_path),
    tests=[
        TestCase(
            name="notifies the user",
            mocks=mocks,
            expected_outputs=[{"json": {
                "user": {"name": "Ada", "email": "/@example\\.com$/"},
                "messageId": "mock-*",
            }}],
        ),
        TestCase(
            name="expects the wrong user",
            mocks=mocks,
            expected_outputs=[{"json": {"user": {"name": "Grace"}}}],
        ),
    ],
)

configure_logging()
orchestrator = TestOrchestrator(
    RunnerConfig(mock_server_port=0, work_dir=str(work / "fixtures"), coverage=True),
    subject=CallableSubject(run_workflow),
)
orchestrator.on("test:complete", lambda result: print(f"  {result.name}: {result.status.value}"))

results = orchestrator.run_suite(suite)
results.print_summary()

print("\n=== Results (JSON) ===")
print(json.dumps(results.to_dict(), indent=2, default=str))

print("\n=== Coverage ===")
print(json.dumps(orchestrator.get_coverage().summary(), indent=2))

#!/usr/bin/env python
"""
Replay subject: executes a prepared workflow fixture without running any
node logic.

The output is the fixture's expected output when one was supplied, otherwise
the test input echoed as a single item. When FLOWREPLAY_COVERAGE_FILE is set,
every node and connection reachable from the graph's entry nodes is written
there as executed.

    python -m flowreplay.replay --file prepared-workflow.json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections import deque
from datetime import datetime, timezone

from .coverage import WorkflowGraph
from .fixtures import FIXTURE_KEY

COVERAGE_FILE_ENV = "FLOWREPLAY_COVERAGE_FILE"


def replay_output(workflow: dict) -> list:
    fixture = workflow.get(FIXTURE_KEY) or {}
    expected = fixture.get("expectedOutput")
    if expected is not None:
        return expected

    data = fixture.get("inputs") or {}
    if data:
        return [{"json": data}]

    return [{
        "json": {
            "success": True,
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        }
    }]


def reachable_trace(graph: WorkflowGraph) -> dict:
    """Walk the graph breadth-first from nodes with no incoming connection."""
    incoming = {to_node for _, to_node in graph.edges}
    node_ids = [node.id for node in graph.nodes]
    entries = [node_id for node_id in node_ids if node_id not in incoming] or node_ids[:1]

    outgoing: dict[str, list[str]] = {}
    for from_node, to_node in graph.edges:
        outgoing.setdefault(from_node, []).append(to_node)

    visited: list[str] = []
    seen = set()
    connections = []
    queue = deque(entries)
    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        visited.append(node_id)
        for to_node in outgoing.get(node_id, []):
            connections.append({"from": node_id, "to": to_node})
            queue.append(to_node)

    return {
        "executedNodes": [{"nodeId": node_id} for node_id in visited],
        "executedConnections": connections,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Replay a prepared workflow fixture")
    parser.add_argument("--file", required=True, help="Path to the prepared workflow JSON")
    args = parser.parse_args(argv)

    try:
        with open(args.file, encoding="utf-8") as f:
            workflow = json.load(f)
    except (OSError, ValueError) as e:
        print(f"Error executing workflow: {e}", file=sys.stderr)
        return 1

    coverage_file = os.environ.get(COVERAGE_FILE_ENV)
    if coverage_file:
        graph = WorkflowGraph.from_dict(workflow, args.file)
        with open(coverage_file, "w", encoding="utf-8") as f:
            json.dump(reachable_trace(graph), f)

    print(json.dumps(replay_output(workflow)))
    return 0


if __name__ == "__main__":
    sys.exit(main())

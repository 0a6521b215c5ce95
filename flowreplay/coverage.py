"""Node and connection coverage tracking for workflow graphs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Optional

from .utils import deep_copy

logger = logging.getLogger(__name__)


def connection_id(from_node: str, to_node: str) -> str:
    return f"{from_node}->{to_node}"


@dataclass
class GraphNode:
    """A node declared by a workflow definition."""
    id: str
    name: str
    type: str


@dataclass
class WorkflowGraph:
    """Declared shape of a workflow: its identity, nodes and directed edges."""
    id: str
    name: str
    path: str = ""
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, workflow: dict, path: str = "") -> "WorkflowGraph":
        """
        Build a graph from a workflow definition.

        Nodes are identified by 'id' (falling back to 'name'). Connections are
        keyed by source node name: {from: {output: [[{node: to}, ...], ...]}}.
        Edge endpoints are node names, mapped to node ids where known.
        """
        workflow_id = workflow.get("id") or (Path(path).stem if path else "workflow")
        nodes = []
        ids_by_name: dict[str, str] = {}
        for node in workflow.get("nodes") or []:
            node_id = str(node.get("id") or node.get("name"))
            name = str(node.get("name") or node_id)
            nodes.append(GraphNode(id=node_id, name=name, type=str(node.get("type", "unknown"))))
            ids_by_name[name] = node_id

        edges = []
        for from_name, outputs in (workflow.get("connections") or {}).items():
            for destinations in (outputs or {}).values():
                for branch in destinations or []:
                    for dest in branch or []:
                        to_name = dest.get("node")
                        if to_name is None:
                            continue
                        edges.append((
                            ids_by_name.get(from_name, from_name),
                            ids_by_name.get(to_name, to_name),
                        ))

        return cls(
            id=str(workflow_id),
            name=str(workflow.get("name") or workflow_id),
            path=path,
            nodes=nodes,
            edges=edges,
        )


def load_workflow_graph(path: str) -> WorkflowGraph:
    """Read a workflow JSON file into a WorkflowGraph."""
    with open(path, encoding="utf-8") as f:
        workflow = json.load(f)
    return WorkflowGraph.from_dict(workflow, str(path))


@dataclass
class NodeCoverage:
    node_id: str
    node_name: str
    node_type: str
    executed: bool = False
    execution_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict:
        return {
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "nodeType": self.node_type,
            "executed": self.executed,
            "executionCount": self.execution_count,
            "errorCount": self.error_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NodeCoverage":
        return cls(
            node_id=data["nodeId"],
            node_name=data.get("nodeName", data["nodeId"]),
            node_type=data.get("nodeType", "unknown"),
            executed=bool(data.get("executed", False)),
            execution_count=int(data.get("executionCount", 0)),
            error_count=int(data.get("errorCount", 0)),
        )


@dataclass
class ConnectionCoverage:
    from_node: str
    to_node: str
    executed: bool = False
    execution_count: int = 0

    def to_dict(self) -> dict:
        return {
            "from": self.from_node,
            "to": self.to_node,
            "executed": self.executed,
            "executionCount": self.execution_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectionCoverage":
        return cls(
            from_node=data["from"],
            to_node=data["to"],
            executed=bool(data.get("executed", False)),
            execution_count=int(data.get("executionCount", 0)),
        )


@dataclass
class WorkflowCoverage:
    """
    Coverage of one workflow identity.

    Totals are derived from the node and connection maps on every read, so
    they cannot drift from the per-node flags after merges or loads.
    """
    workflow_id: str
    workflow_name: str
    workflow_path: str = ""
    nodes: dict[str, NodeCoverage] = field(default_factory=dict)
    connections: dict[str, ConnectionCoverage] = field(default_factory=dict)
    test_count: int = 0

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    @property
    def executed_nodes(self) -> int:
        return sum(1 for n in self.nodes.values() if n.executed)

    @property
    def total_connections(self) -> int:
        return len(self.connections)

    @property
    def executed_connections(self) -> int:
        return sum(1 for c in self.connections.values() if c.executed)

    def to_dict(self) -> dict:
        return {
            "id": self.workflow_id,
            "workflowName": self.workflow_name,
            "workflowPath": self.workflow_path,
            "totalNodes": self.total_nodes,
            "executedNodes": self.executed_nodes,
            "totalConnections": self.total_connections,
            "executedConnections": self.executed_connections,
            "testCount": self.test_count,
            "nodes": [[node_id, node.to_dict()] for node_id, node in self.nodes.items()],
            "connections": [[conn_id, conn.to_dict()] for conn_id, conn in self.connections.items()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowCoverage":
        return cls(
            workflow_id=data["id"],
            workflow_name=data.get("workflowName", data["id"]),
            workflow_path=data.get("workflowPath", ""),
            nodes={node_id: NodeCoverage.from_dict(node) for node_id, node in data.get("nodes", [])},
            connections={
                conn_id: ConnectionCoverage.from_dict(conn)
                for conn_id, conn in data.get("connections", [])
            },
            test_count=int(data.get("testCount", 0)),
        )


@dataclass
class CoverageReport:
    """All tracked workflows plus an aggregate summary."""
    workflows: dict[str, WorkflowCoverage] = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')

    @property
    def total_workflows(self) -> int:
        return len(self.workflows)

    @property
    def total_nodes(self) -> int:
        return sum(w.total_nodes for w in self.workflows.values())

    @property
    def executed_nodes(self) -> int:
        return sum(w.executed_nodes for w in self.workflows.values())

    @property
    def total_connections(self) -> int:
        return sum(w.total_connections for w in self.workflows.values())

    @property
    def executed_connections(self) -> int:
        return sum(w.executed_connections for w in self.workflows.values())

    @property
    def test_count(self) -> int:
        return sum(w.test_count for w in self.workflows.values())

    def node_type_coverage(self) -> dict[str, dict[str, int]]:
        """Per node type: how many nodes exist and how many were executed."""
        tallies: dict[str, dict[str, int]] = {}
        for workflow in self.workflows.values():
            for node in workflow.nodes.values():
                stats = tallies.setdefault(node.node_type, {"total": 0, "executed": 0})
                stats["total"] += 1
                if node.executed:
                    stats["executed"] += 1
        return tallies

    def summary(self) -> dict:
        return {
            "totalWorkflows": self.total_workflows,
            "totalNodes": self.total_nodes,
            "executedNodes": self.executed_nodes,
            "totalConnections": self.total_connections,
            "executedConnections": self.executed_connections,
            "nodeTypeCoverage": [[t, stats] for t, stats in self.node_type_coverage().items()],
            "testCount": self.test_count,
            "timestamp": self.timestamp,
        }

    def to_dict(self) -> dict:
        return {
            "workflows": [w.to_dict() for w in self.workflows.values()],
            "summary": self.summary(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CoverageReport":
        workflows = {}
        for entry in data.get("workflows", []):
            workflow = WorkflowCoverage.from_dict(entry)
            workflows[workflow.workflow_id] = workflow
        return cls(workflows=workflows, timestamp=data.get("summary", {}).get("timestamp", ""))


class CoverageCollector:
    """
    Tracks which nodes and connections of each workflow were exercised.

    The first hit of a node or connection flips its executed flag; every hit
    increments its execution count. Calls without an explicit workflow_id
    apply to the workflow most recently passed to start_workflow().
    Individual calls are serialized by an internal lock.
    """

    def __init__(self):
        self._lock = RLock()
        self._report = CoverageReport()
        self._current: Optional[str] = None

    @property
    def current_workflow(self) -> Optional[str]:
        return self._current

    def start_workflow(self, graph: WorkflowGraph) -> WorkflowCoverage:
        """
        Begin (or resume) tracking a workflow from its declared graph.

        Previously recorded flags and counts for nodes and connections that
        still exist are kept.
        """
        with self._lock:
            existing = self._report.workflows.get(graph.id)

            nodes = {}
            for node in graph.nodes:
                prior = existing.nodes.get(node.id) if existing else None
                nodes[node.id] = NodeCoverage(
                    node_id=node.id,
                    node_name=node.name,
                    node_type=node.type,
                    executed=prior.executed if prior else False,
                    execution_count=prior.execution_count if prior else 0,
                    error_count=prior.error_count if prior else 0,
                )

            connections = {}
            for from_node, to_node in graph.edges:
                conn_id = connection_id(from_node, to_node)
                prior_conn = existing.connections.get(conn_id) if existing else None
                connections[conn_id] = ConnectionCoverage(
                    from_node=from_node,
                    to_node=to_node,
                    executed=prior_conn.executed if prior_conn else False,
                    execution_count=prior_conn.execution_count if prior_conn else 0,
                )

            workflow = WorkflowCoverage(
                workflow_id=graph.id,
                workflow_name=graph.name,
                workflow_path=graph.path,
                nodes=nodes,
                connections=connections,
                test_count=existing.test_count if existing else 0,
            )
            self._report.workflows[graph.id] = workflow
            self._current = graph.id
            return workflow

    def _resolve(self, workflow_id: Optional[str]) -> Optional[WorkflowCoverage]:
        key = workflow_id if workflow_id is not None else self._current
        if key is None:
            return None
        return self._report.workflows.get(key)

    def record_node_execution(self, node_id: str, is_error: bool = False,
                              workflow_id: Optional[str] = None) -> bool:
        """
        Record one execution of a node.

        Returns:
            False when the workflow or node is not tracked
        """
        with self._lock:
            workflow = self._resolve(workflow_id)
            node = workflow.nodes.get(node_id) if workflow else None
            if node is None:
                logger.debug("Ignoring hit on untracked node %s", node_id)
                return False
            node.executed = True
            node.execution_count += 1
            if is_error:
                node.error_count += 1
            return True

    def record_edge_execution(self, from_node: str, to_node: str,
                              workflow_id: Optional[str] = None) -> bool:
        """Record one traversal of the connection from_node -> to_node."""
        with self._lock:
            workflow = self._resolve(workflow_id)
            conn = workflow.connections.get(connection_id(from_node, to_node)) if workflow else None
            if conn is None:
                logger.debug("Ignoring hit on untracked connection %s -> %s", from_node, to_node)
                return False
            conn.executed = True
            conn.execution_count += 1
            return True

    def end_workflow(self, workflow_id: Optional[str] = None):
        """Count one completed test against the workflow."""
        with self._lock:
            workflow = self._resolve(workflow_id)
            if workflow is not None:
                workflow.test_count += 1
            if workflow_id is None or workflow_id == self._current:
                self._current = None

    def get_coverage(self) -> CoverageReport:
        return self._report

    def merge(self, other: CoverageReport):
        """Combine coverage gathered elsewhere: flags OR-ed, counts summed."""
        with self._lock:
            for workflow_id, other_workflow in other.workflows.items():
                mine = self._report.workflows.get(workflow_id)
                if mine is None:
                    self._report.workflows[workflow_id] = deep_copy(other_workflow)
                    continue

                for node_id, other_node in other_workflow.nodes.items():
                    node = mine.nodes.get(node_id)
                    if node is None:
                        mine.nodes[node_id] = deep_copy(other_node)
                        continue
                    node.executed = node.executed or other_node.executed
                    node.execution_count += other_node.execution_count
                    node.error_count += other_node.error_count

                for conn_id, other_conn in other_workflow.connections.items():
                    conn = mine.connections.get(conn_id)
                    if conn is None:
                        mine.connections[conn_id] = deep_copy(other_conn)
                        continue
                    conn.executed = conn.executed or other_conn.executed
                    conn.execution_count += other_conn.execution_count

                mine.test_count += other_workflow.test_count

    def reset(self):
        with self._lock:
            self._report = CoverageReport()
            self._current = None

    def save(self, output_path: str):
        """Write coverage as a JSON document of explicit key/value lists."""
        with self._lock:
            data = self._report.to_dict()
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def load(self, input_path: str):
        """Replace the tracked coverage with a previously saved document."""
        with open(input_path, encoding="utf-8") as f:
            data = json.load(f)
        with self._lock:
            self._report = CoverageReport.from_dict(data)
            self._current = None

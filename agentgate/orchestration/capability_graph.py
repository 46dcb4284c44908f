from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping, Union

from pydantic import ValidationError

from ..core.config import Settings, get_settings
from ..core.exceptions import GraphLoadError
from ..core.logging import get_logger
from ..core.metrics import record_graph_load
from ..schemas.graph import (
    DependsOnEdge,
    GraphDocument,
    GraphEdge,
    GraphNode,
    MemberOfEdge,
    ReportsToEdge,
    RoutesToEdge,
    TeamNode,
    WorkerNode,
)

__all__ = ["CapabilityGraph", "GraphRegistry", "GraphSource", "load_graph"]

logger = get_logger(name=__name__)

GraphSource = Union[str, Path, Mapping[str, Any], GraphDocument]

_SELF_LOOP_FORBIDDEN = (ReportsToEdge, MemberOfEdge)


def _read_source(source: GraphSource) -> tuple[GraphDocument, Any]:
    if isinstance(source, GraphDocument):
        return source, None
    raw: Any
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise GraphLoadError(f"Unable to read capability graph at {path}: {exc.strerror or exc}") from exc
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GraphLoadError(
                f"Capability graph at {path} is not valid JSON (line {exc.lineno}, column {exc.colno})"
            ) from exc
    elif isinstance(source, Mapping):
        raw = source
    else:
        raise GraphLoadError(f"Unsupported graph source type: {type(source).__name__}")

    try:
        return GraphDocument.model_validate(raw), raw
    except ValidationError as exc:
        raise _error_from_validation(exc, raw) from exc


def _error_from_validation(error: ValidationError, raw: Any) -> GraphLoadError:
    details = error.errors()
    first = details[0] if details else {}
    location = tuple(first.get("loc", ()))
    message = first.get("msg", "invalid structure")
    dotted = ".".join(str(part) for part in location)
    text = f"Malformed capability graph at {dotted}: {message}" if dotted else f"Malformed capability graph: {message}"

    if len(location) >= 2 and isinstance(location[1], int):
        index = location[1]
        if location[0] == "edges":
            return GraphLoadError(text, edge_index=index)
        if location[0] == "nodes":
            node_id = None
            entries = raw.get("nodes") if isinstance(raw, Mapping) else None
            if isinstance(entries, (list, tuple)) and index < len(entries) and isinstance(entries[index], Mapping):
                node_id = entries[index].get("id")
            return GraphLoadError(text, node_id=str(node_id) if node_id else f"#{index}")
    return GraphLoadError(text)


def _validate_document(document: GraphDocument) -> None:
    nodes: dict[str, GraphNode] = {}
    for node in document.nodes:
        if node.id in nodes:
            raise GraphLoadError("Duplicate node id", node_id=node.id)
        nodes[node.id] = node

    for node in document.nodes:
        if not isinstance(node, TeamNode):
            continue
        leader = nodes.get(node.leader_id)
        if leader is None:
            raise GraphLoadError(f"Team leader '{node.leader_id}' does not exist", node_id=node.id)
        if not isinstance(leader, WorkerNode):
            raise GraphLoadError(f"Team leader '{node.leader_id}' is not a worker", node_id=node.id)
        for member_id in node.member_ids:
            member = nodes.get(member_id)
            if member is None:
                raise GraphLoadError(f"Team member '{member_id}' does not exist", node_id=node.id)
            if not isinstance(member, WorkerNode):
                raise GraphLoadError(f"Team member '{member_id}' is not a worker", node_id=node.id)

    for index, edge in enumerate(document.edges):
        if edge.source not in nodes:
            raise GraphLoadError(f"{edge.kind} edge source '{edge.source}' does not exist", edge_index=index)
        if edge.target not in nodes:
            raise GraphLoadError(f"{edge.kind} edge target '{edge.target}' does not exist", edge_index=index)
        if isinstance(edge, _SELF_LOOP_FORBIDDEN) and edge.source == edge.target:
            raise GraphLoadError(f"{edge.kind} edge cannot point a node at itself", edge_index=index)

    _reject_reporting_cycles(document.edges)


def _reject_reporting_cycles(edges: Iterable[GraphEdge]) -> None:
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        if isinstance(edge, ReportsToEdge):
            adjacency.setdefault(edge.source, []).append(edge.target)

    done: set[str] = set()
    for start in adjacency:
        if start in done:
            continue
        on_path: set[str] = {start}
        stack: list[tuple[str, Iterable[str]]] = [(start, iter(adjacency.get(start, ())))]
        while stack:
            current, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_path.discard(current)
                done.add(current)
                continue
            if child in on_path:
                raise GraphLoadError("Cycle detected in reports_to edges", node_id=child)
            if child in done:
                continue
            on_path.add(child)
            stack.append((child, iter(adjacency.get(child, ()))))


class CapabilityGraph:
    """Immutable view over a validated capability graph.

    Instances never change after construction, so a single graph may be shared
    by any number of concurrent readers.
    """

    def __init__(self, document: GraphDocument) -> None:
        _validate_document(document)
        self._document = document
        self._nodes_by_id: dict[str, GraphNode] = {node.id: node for node in document.nodes}
        self._workers: tuple[WorkerNode, ...] = tuple(
            node for node in document.nodes if isinstance(node, WorkerNode)
        )
        self._teams: tuple[TeamNode, ...] = tuple(node for node in document.nodes if isinstance(node, TeamNode))
        parents: dict[str, str] = {}
        for edge in document.edges:
            if isinstance(edge, ReportsToEdge):
                parents.setdefault(edge.source, edge.target)
        self._parents = parents
        self._routes: tuple[RoutesToEdge, ...] = tuple(
            edge for edge in document.edges if isinstance(edge, RoutesToEdge)
        )

    @classmethod
    def load(cls, source: GraphSource) -> "CapabilityGraph":
        document, _ = _read_source(source)
        return cls(document)

    @property
    def version(self) -> str:
        return self._document.version

    @property
    def document(self) -> GraphDocument:
        return self._document

    @property
    def nodes(self) -> tuple[GraphNode, ...]:
        return self._document.nodes

    @property
    def edges(self) -> tuple[GraphEdge, ...]:
        return self._document.edges

    @property
    def workers(self) -> tuple[WorkerNode, ...]:
        return self._workers

    @property
    def teams(self) -> tuple[TeamNode, ...]:
        return self._teams

    def routes(self) -> list[RoutesToEdge]:
        return list(self._routes)

    def find_by_id(self, node_id: str) -> GraphNode | None:
        return self._nodes_by_id.get(node_id)

    def find_by_domain(self, query: str) -> list[WorkerNode]:
        return self._match_workers(query, lambda worker: worker.domain)

    def find_by_capability(self, query: str) -> list[WorkerNode]:
        return self._match_workers(query, lambda worker: worker.capabilities)

    def team_members(self, team_id: str) -> list[WorkerNode]:
        team = self._nodes_by_id.get(team_id)
        if not isinstance(team, TeamNode):
            return []
        members: list[WorkerNode] = []
        for member_id in team.member_ids:
            member = self._nodes_by_id.get(member_id)
            if isinstance(member, WorkerNode):
                members.append(member)
        return members

    def hierarchy(self, node_id: str) -> list[GraphNode]:
        chain: list[GraphNode] = []
        seen = {node_id}
        current = node_id
        while True:
            parent_id = self._parents.get(current)
            if parent_id is None or parent_id in seen:
                break
            parent = self._nodes_by_id.get(parent_id)
            if parent is None:
                break
            chain.append(parent)
            seen.add(parent_id)
            current = parent_id
        return chain

    def edges_from(self, node_id: str, kind: str | None = None) -> list[GraphEdge]:
        return [
            edge
            for edge in self._document.edges
            if edge.source == node_id and (kind is None or edge.kind == kind)
        ]

    def dependencies(self, node_id: str) -> list[DependsOnEdge]:
        return [edge for edge in self.edges_from(node_id, "depends_on") if isinstance(edge, DependsOnEdge)]

    def _match_workers(self, query: str, keywords_of) -> list[WorkerNode]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        matched: list[WorkerNode] = []
        for worker in self._workers:
            if worker.id.lower() in needle:
                matched.append(worker)
                continue
            for keyword in keywords_of(worker):
                candidate = keyword.lower()
                if candidate in needle or needle in candidate:
                    matched.append(worker)
                    break
        return matched


def load_graph(source: GraphSource) -> CapabilityGraph:
    return CapabilityGraph.load(source)


class GraphRegistry:
    """Owns the active capability graph and swaps it atomically on reload."""

    def __init__(self, graph: CapabilityGraph | None = None) -> None:
        self._graph = graph
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> GraphRegistry:
        """Registry holding the graph at ``graph.path``, or an empty one when unset."""
        registry = cls()
        path = (settings or get_settings()).graph.path
        if path is not None:
            registry.load(path)
        return registry

    @property
    def current(self) -> CapabilityGraph:
        graph = self._graph
        if graph is None:
            raise GraphLoadError("No capability graph has been loaded")
        return graph

    @property
    def loaded(self) -> bool:
        return self._graph is not None

    def load(self, source: GraphSource) -> CapabilityGraph:
        return self._swap(source, operation="load")

    def reload(self, source: GraphSource) -> CapabilityGraph:
        return self._swap(source, operation="reload")

    def _swap(self, source: GraphSource, *, operation: str) -> CapabilityGraph:
        try:
            graph = CapabilityGraph.load(source)
        except GraphLoadError as exc:
            record_graph_load(operation=operation, success=False)
            logger.error(
                "graph_load_failed",
                operation=operation,
                error=str(exc),
                node_id=exc.node_id,
                edge_index=exc.edge_index,
            )
            raise
        with self._lock:
            previous = self._graph
            self._graph = graph
        record_graph_load(operation=operation, success=True)
        logger.info(
            "graph_reloaded" if operation == "reload" else "graph_loaded",
            version=graph.version,
            nodes=len(graph.nodes),
            edges=len(graph.edges),
            previous_version=previous.version if previous is not None else None,
        )
        return graph

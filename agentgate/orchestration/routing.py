from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import ValidationError

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..schemas.graph import RoutesToEdge, TeamNode, WorkerNode
from ..schemas.orchestrator import RoutingIntent, RoutingMode, TaskPriority
from .capability_graph import CapabilityGraph

__all__ = ["GraphRouter", "RoutingDecision", "coerce_intent"]

logger = get_logger(name=__name__)

_HIGH_PRIORITY = re.compile(r"\b(urgent|critical|broken|error|fix)\b", re.IGNORECASE)
_MEDIUM_PRIORITY = re.compile(r"\b(refactor|optimi[sz]e|improve)\b", re.IGNORECASE)


@dataclass(slots=True)
class RoutingDecision:
    workers: list[WorkerNode]
    mode: RoutingMode
    priority: TaskPriority
    reason: str
    edge: RoutesToEdge | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return [worker.id for worker in self.workers]


def coerce_intent(intent: RoutingIntent | Mapping[str, Any] | str | None) -> RoutingIntent | None:
    if intent is None:
        return None
    if isinstance(intent, RoutingIntent):
        return intent
    if isinstance(intent, str):
        return RoutingIntent(type=intent)
    payload = dict(intent)
    try:
        return RoutingIntent.model_validate(payload)
    except ValidationError:
        return RoutingIntent(type=str(payload.get("type") or ""))


def determine_priority(text: str) -> TaskPriority:
    if _HIGH_PRIORITY.search(text):
        return "high"
    if _MEDIUM_PRIORITY.search(text):
        return "medium"
    return "low"


class GraphRouter:
    """Resolves intents to workers through the ``routes_to`` edges of a graph."""

    def __init__(self, graph: CapabilityGraph, *, settings: Settings | None = None) -> None:
        self._graph = graph
        self._settings = settings or get_settings()

    @property
    def graph(self) -> CapabilityGraph:
        return self._graph

    def select_edge(self, intent_type: str) -> RoutesToEdge | None:
        best: tuple[int, int] | None = None
        selected: RoutesToEdge | None = None
        for index, edge in enumerate(self._graph.routes()):
            if not edge.matches(intent_type):
                continue
            rank = (edge.priority, index)
            if best is None or rank < best:
                best = rank
                selected = edge
        return selected

    def route(self, intent: RoutingIntent | Mapping[str, Any] | str) -> list[WorkerNode]:
        resolved = coerce_intent(intent)
        if resolved is None:
            return []
        edge = self.select_edge(resolved.type)
        if edge is None:
            return []
        return self._expand(edge.target)

    def decide(
        self,
        intent: RoutingIntent | Mapping[str, Any] | str | None = None,
        *,
        instruction: str | None = None,
    ) -> RoutingDecision:
        resolved = coerce_intent(intent)
        priority = determine_priority(" ".join(filter(None, [instruction, resolved.type if resolved else None])))

        if resolved is not None:
            edge = self.select_edge(resolved.type)
            workers = self._expand(edge.target) if edge is not None else []
            reason = "edge" if workers else "no-route"
            decision = RoutingDecision(
                workers=workers,
                mode=_mode_for(workers),
                priority=priority,
                reason=reason,
                edge=edge,
                metadata={"intent": resolved.type},
            )
        elif instruction and self._settings.routing.domain_fallback:
            matched = self._graph.find_by_domain(instruction)[: self._settings.routing.max_agents]
            decision = RoutingDecision(
                workers=matched,
                mode=_mode_for(matched),
                priority=priority,
                reason="domain-match" if matched else "no-route",
            )
        else:
            decision = RoutingDecision(workers=[], mode=RoutingMode.NONE, priority=priority, reason="no-route")

        logger.debug(
            "routing_decided",
            reason=decision.reason,
            workers=decision.names,
            mode=decision.mode.value,
            priority=decision.priority,
        )
        return decision

    def _expand(self, node_id: str) -> list[WorkerNode]:
        node = self._graph.find_by_id(node_id)
        if isinstance(node, TeamNode):
            return self._graph.team_members(node.id)
        if isinstance(node, WorkerNode):
            return [node]
        return []


def _mode_for(workers: list[WorkerNode]) -> RoutingMode:
    if not workers:
        return RoutingMode.NONE
    if len(workers) == 1:
        return RoutingMode.SINGLE
    return RoutingMode.SWARM

"""
Orchestration Package

Decision core for routing and gating agent work:
- Capability graph loading and queries
- Intent routing over ``routes_to`` edges
- Risk assessment with rollback checkpoints
- Reasoning, action and output guardrails
- The request state machine and its learning ledger
"""

from .capability_graph import CapabilityGraph, GraphRegistry, load_graph
from .checkpoints import CheckpointStore, FileCheckpointStore, InMemoryCheckpointStore
from .guardrails import GuardrailPipeline
from .learning import ImprovementSuggestion, OutcomeLedger, TaskOutcome
from .orchestrator import Executor, Orchestrator
from .risk import RiskAssessor
from .routing import GraphRouter, RoutingDecision
from .rulesets import GuardrailRuleset, RiskRuleset, default_guardrail_ruleset, default_risk_ruleset

__all__ = [
    # Graph
    "CapabilityGraph",
    "GraphRegistry",
    "load_graph",
    "GraphRouter",
    "RoutingDecision",
    # Risk
    "RiskAssessor",
    "RiskRuleset",
    "default_risk_ruleset",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    # Guardrails
    "GuardrailPipeline",
    "GuardrailRuleset",
    "default_guardrail_ruleset",
    # Pipeline
    "Executor",
    "Orchestrator",
    # Learning
    "ImprovementSuggestion",
    "OutcomeLedger",
    "TaskOutcome",
]

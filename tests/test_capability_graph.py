from __future__ import annotations

from agentgate.schemas.graph import DependsOnEdge, TeamNode, WorkerNode
from tests.helpers.stubs import sample_graph


def test_nodes_and_edges_keep_declaration_order() -> None:
    graph = sample_graph()

    assert [node.id for node in graph.nodes] == [
        "orchestrator",
        "research-lead",
        "web-researcher",
        "data-analyst",
        "frontend-dev",
        "research-team",
    ]
    assert len(graph.edges) == 8
    assert [worker.id for worker in graph.workers][-1] == "frontend-dev"
    assert [team.id for team in graph.teams] == ["research-team"]


def test_camel_case_and_legacy_keys_are_accepted() -> None:
    graph = sample_graph()

    team = graph.find_by_id("research-team")
    assert isinstance(team, TeamNode)
    assert team.leader_id == "research-lead"
    assert team.member_ids == ("research-lead", "web-researcher", "data-analyst")

    frontend = graph.find_by_id("frontend-dev")
    assert isinstance(frontend, WorkerNode)
    assert frontend.kind == "specialist"
    assert frontend.skill_ref == "skills/frontend.md"


def test_find_by_id_returns_none_for_unknown_node() -> None:
    assert sample_graph().find_by_id("ghost") is None


def test_find_by_domain_matches_keywords_in_declaration_order() -> None:
    graph = sample_graph()

    matched = graph.find_by_domain("research")

    assert [worker.id for worker in matched] == ["research-lead", "web-researcher"]


def test_find_by_domain_is_case_insensitive_and_matches_partial_keywords() -> None:
    graph = sample_graph()

    assert [worker.id for worker in graph.find_by_domain("ANALYSIS")] == ["research-lead", "data-analyst"]
    assert [worker.id for worker in graph.find_by_domain("front")] == ["frontend-dev"]


def test_find_by_domain_with_empty_query_returns_nothing() -> None:
    graph = sample_graph()

    assert graph.find_by_domain("") == []
    assert graph.find_by_domain("   ") == []


def test_find_by_capability_uses_capability_keywords() -> None:
    graph = sample_graph()

    assert [worker.id for worker in graph.find_by_capability("tailwind")] == ["frontend-dev"]
    assert graph.find_by_capability("welding") == []


def test_team_members_preserve_member_order() -> None:
    graph = sample_graph()

    members = graph.team_members("research-team")

    assert [member.id for member in members] == ["research-lead", "web-researcher", "data-analyst"]
    assert graph.team_members("frontend-dev") == []
    assert graph.team_members("ghost") == []


def test_hierarchy_walks_reports_to_chain_upwards() -> None:
    graph = sample_graph()

    chain = graph.hierarchy("web-researcher")

    assert [node.id for node in chain] == ["research-lead", "orchestrator"]
    assert graph.hierarchy("orchestrator") == []


def test_dependencies_and_edges_from() -> None:
    graph = sample_graph()

    dependencies = graph.dependencies("frontend-dev")
    assert len(dependencies) == 1
    assert isinstance(dependencies[0], DependsOnEdge)
    assert dependencies[0].target == "data-analyst"
    assert dependencies[0].requirement == "metrics feed"

    outgoing = graph.edges_from("orchestrator", "routes_to")
    assert [edge.target for edge in outgoing] == ["research-team", "frontend-dev"]
    assert [edge.kind for edge in graph.edges_from("frontend-dev")] == ["reports_to", "depends_on"]


def test_routes_returns_a_copy() -> None:
    graph = sample_graph()

    routes = graph.routes()
    routes.clear()

    assert len(graph.routes()) == 2

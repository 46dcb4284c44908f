from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "DependsOnEdge",
    "EdgeKind",
    "GraphDocument",
    "GraphEdge",
    "GraphNode",
    "MemberOfEdge",
    "NodeKind",
    "ReportsToEdge",
    "RoutesToEdge",
    "TeamNode",
    "WorkerNode",
]

NodeKind = Literal["specialist", "leader", "orchestrator", "team"]
EdgeKind = Literal["reports_to", "member_of", "routes_to", "depends_on"]


class _GraphModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


def _coerce_keywords(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ValueError("keyword collections must be lists of strings")
    keywords: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError("keywords must be strings")
        trimmed = item.strip()
        if trimmed:
            keywords.append(trimmed)
    return tuple(keywords)


class WorkerNode(_GraphModel):
    """A routable unit of capability."""

    kind: Literal["specialist", "leader", "orchestrator"]
    id: str = Field(..., min_length=1)
    domain: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    skill_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("skillRef", "skill_ref", "skillPath"),
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("domain", "capabilities", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: Any) -> tuple[str, ...]:
        return _coerce_keywords(value)


class TeamNode(_GraphModel):
    """A named group of workers with a designated leader."""

    kind: Literal["team"]
    id: str = Field(..., min_length=1)
    purpose: str = ""
    leader_id: str = Field(..., min_length=1)
    member_ids: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)


GraphNode = Annotated[Union[WorkerNode, TeamNode], Field(discriminator="kind")]


class _EdgeBase(_GraphModel):
    source: str = Field(..., alias="from", min_length=1)
    target: str = Field(..., alias="to", min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReportsToEdge(_EdgeBase):
    kind: Literal["reports_to"]


class MemberOfEdge(_EdgeBase):
    kind: Literal["member_of"]


class RoutesToEdge(_EdgeBase):
    kind: Literal["routes_to"]
    condition: str | None = None
    priority: int = 0

    def matches(self, intent_type: str) -> bool:
        needle = intent_type.strip().lower()
        if not needle or not self.condition:
            return False
        return needle in self.condition.lower()


class DependsOnEdge(_EdgeBase):
    kind: Literal["depends_on"]
    requirement: str = ""


GraphEdge = Annotated[
    Union[ReportsToEdge, MemberOfEdge, RoutesToEdge, DependsOnEdge],
    Field(discriminator="kind"),
]


def _normalize_entry(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return entry
    normalized = dict(entry)
    if "kind" not in normalized and "type" in normalized:
        normalized["kind"] = normalized.pop("type")
    if normalized.get("kind") == "routes_to" and not normalized.get("condition"):
        metadata = normalized.get("metadata")
        if isinstance(metadata, Mapping) and metadata.get("condition"):
            normalized["condition"] = metadata["condition"]
    return normalized


class GraphDocument(_GraphModel):
    version: str = "1.0.0"
    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        payload = dict(data)
        for key in ("nodes", "edges"):
            entries = payload.get(key)
            if isinstance(entries, (list, tuple)):
                payload[key] = [_normalize_entry(entry) for entry in entries]
        return payload

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> str:
        if value is None:
            return "1.0.0"
        return str(value)

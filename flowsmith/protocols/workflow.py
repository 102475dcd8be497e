# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Workflow Schema — The canonical typed shape of an automation.

A workflow is a directed graph of typed nodes joined by port-to-port
edges, activated by one or more triggers. Every component downstream of
generation (persistence, queueing, workers) accepts only a
WorkflowDefinition produced by validate_workflow(); untyped JSON never
travels further than this module.

Design decisions:
  - Wire format is camelCase (fromNodeId, authRef) to stay compatible
    with the dashboard and the builder service; Python attributes are
    snake_case.
  - Structural invariants (unique node ids, edge endpoints, trigger
    config keys) are enforced at construction time, so an instance of
    WorkflowDefinition is always sound.
  - validate_workflow() is fail-fast: it reports the first violated
    constraint as a single human-readable string.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

NodeType = Literal[
    "webhook", "email", "transform", "http", "slack", "database", "ai", "conditional",
]
TriggerType = Literal["webhook", "schedule", "event"]

NODE_TYPES: Tuple[str, ...] = NodeType.__args__
TRIGGER_TYPES: Tuple[str, ...] = TriggerType.__args__

# Node types that talk to third-party services and need stored credentials.
AUTH_REQUIRED_TYPES: FrozenSet[str] = frozenset({"email", "slack", "http"})

# Config keys a trigger must carry, per trigger type.
TRIGGER_REQUIRED_KEYS: Dict[str, Tuple[str, ...]] = {
    "webhook": ("path", "method"),
    "schedule": ("cron",),
    "event": (),
}


class SchemaError(ValueError):
    """Raised when a candidate workflow is structurally invalid."""


# ── Graph Elements ──────────────────────────────────────────


class WorkflowNode(BaseModel):
    """One typed step of a workflow."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Unique within the workflow")
    type: NodeType
    action: str = Field(..., min_length=1, description="e.g. send, receive, process")
    inputs: Dict[str, Any] = Field(
        ...,
        description="Parameter name → literal value or {{node.port}} template",
    )
    outputs: List[str] = Field(..., description="Named output ports")
    auth_ref: Optional[str] = Field(
        default=None,
        alias="authRef",
        description="Reference to stored credentials, e.g. slack_webhook",
    )


class WorkflowEdge(BaseModel):
    """Port-to-port connection between two nodes."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    from_node_id: str = Field(..., alias="fromNodeId")
    from_port: str = Field(..., alias="fromPort")
    to_node_id: str = Field(..., alias="toNodeId")
    to_port: str = Field(..., alias="toPort")


class WorkflowTrigger(BaseModel):
    """Event source that activates a workflow."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: TriggerType
    config: Dict[str, Any] = Field(default_factory=dict)


# ── Workflow ────────────────────────────────────────────────


class WorkflowDefinition(BaseModel):
    """A complete, structurally sound workflow graph."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=1000)
    env: Dict[str, str] = Field(
        default_factory=dict,
        description="Environment variable → value or secret placeholder",
    )
    nodes: List[WorkflowNode] = Field(..., min_length=1)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    triggers: List[WorkflowTrigger] = Field(..., min_length=1)

    # ── Validators ──────────────────────────────────────────────

    @model_validator(mode="after")
    def check_graph(self) -> "WorkflowDefinition":
        """Enforce the invariants a type annotation cannot express."""
        error = structural_error(self)
        if error:
            raise SchemaError(error)
        return self

    # ── Graph Helpers ───────────────────────────────────────────

    @property
    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def successors(self, node_id: str) -> List[str]:
        """Target node ids of all edges leaving node_id."""
        return [e.to_node_id for e in self.edges if e.from_node_id == node_id]

    # ── Serialization Helpers ───────────────────────────────────

    def to_json_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase, no null authRef)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), ensure_ascii=False)


def structural_error(workflow: WorkflowDefinition) -> Optional[str]:
    """Return the first structural violation of a well-typed workflow."""
    seen: set[str] = set()
    for index, node in enumerate(workflow.nodes):
        if node.id in seen:
            return f"nodes.{index}.id: duplicate node id '{node.id}'"
        seen.add(node.id)

    for index, edge in enumerate(workflow.edges):
        if edge.from_node_id not in seen:
            return (
                f"edges.{index}.fromNodeId: edge references non-existent node "
                f"'{edge.from_node_id}'"
            )
        if edge.to_node_id not in seen:
            return (
                f"edges.{index}.toNodeId: edge references non-existent node "
                f"'{edge.to_node_id}'"
            )

    for index, trigger in enumerate(workflow.triggers):
        for key in TRIGGER_REQUIRED_KEYS.get(trigger.type, ()):
            if key not in trigger.config or trigger.config[key] in (None, ""):
                return (
                    f"triggers.{index}.config: {trigger.type} trigger requires '{key}'"
                )
    return None


# ── Validation Result ───────────────────────────────────────


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validate_workflow(): a workflow or the first error."""

    success: bool
    workflow: Optional[WorkflowDefinition] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, workflow: WorkflowDefinition) -> "ValidationResult":
        return cls(success=True, workflow=workflow)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(success=False, error=error)

    def unwrap(self) -> WorkflowDefinition:
        """Return the workflow or raise SchemaError."""
        if not self.success or self.workflow is None:
            raise SchemaError(self.error or "invalid workflow")
        return self.workflow


def _format_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    ctx_error = (first.get("ctx") or {}).get("error")
    if isinstance(ctx_error, SchemaError):
        return str(ctx_error)
    path = ".".join(str(part) for part in first.get("loc", ()))
    return f"{path}: {first['msg']}" if path else first["msg"]


def validate_workflow(candidate: Any) -> ValidationResult:
    """
    Validate an untyped candidate (dict, JSON text or model).

    Pure function, no I/O. Returns ValidationResult.ok(workflow) with the
    normalized workflow, or ValidationResult.fail(message) naming the
    first violated constraint.
    """
    if isinstance(candidate, WorkflowDefinition):
        candidate = candidate.to_json_dict()
    if isinstance(candidate, (str, bytes)):
        try:
            candidate = json.loads(candidate)
        except ValueError as e:
            return ValidationResult.fail(f"Invalid JSON: {e}")
    if not isinstance(candidate, dict):
        return ValidationResult.fail(
            f"Workflow must be a JSON object, got {type(candidate).__name__}"
        )

    try:
        workflow = WorkflowDefinition.model_validate(candidate)
    except ValidationError as e:
        return ValidationResult.fail(_format_error(e))
    return ValidationResult.ok(workflow)


# ── Language-Model Contract ─────────────────────────────────

WORKFLOW_JSON_SCHEMA: Dict[str, Any] = WorkflowDefinition.model_json_schema(by_alias=True)

WORKFLOW_SYSTEM_PROMPT = """You are a Workflow Architect AI that converts natural language descriptions into structured workflow JSON.

CONSTRAINTS:
- Only use these node types: webhook, email, transform, http, slack, database, ai, conditional
- All workflows must have at least 1 trigger and 1 node
- Every edge must connect existing node ids (fromNodeId/fromPort -> toNodeId/toPort)
- webhook triggers need config.path and config.method; schedule triggers need config.cron
- Use authRef for any nodes requiring API credentials (email, slack, external APIs)
- Variable interpolation uses {{node.output}} syntax
- Keep workflows practical and implementable

NODE VOCABULARY:
- webhook: receive/send HTTP requests
- email: send emails via SMTP/API (inputs.to is required)
- transform: process/transform data
- http: make HTTP requests to external APIs (inputs.url is required)
- slack: send Slack messages/notifications
- database: read/write to databases
- ai: AI processing (GPT, analysis, etc.)
- conditional: if/then logic branching

AUTHREF USAGE:
- Format: "provider_action" (e.g., "slack_webhook", "gmail_smtp", "openai_api")

Return only one JSON object with the keys name, description, env, nodes, edges, triggers."""

"""Workflow authoring: drafts, built-in templates and publication."""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from agentcollab.core.errors import TemplateNotFoundError, WorkflowBuildError, WorkflowPublishError
from agentcollab.core.models import utcnow
from agentcollab.core.workflow import (
    AgentNode,
    RoutingRule,
    Severity,
    ValidationResult,
    WorkflowConfig,
    WorkflowPhase,
    all_of,
    always,
    contributed,
    not_contributed,
    phase_is,
)
from agentcollab.orchestration.validator import WorkflowValidator, estimate_execution_time

DEFAULT_MAX_ITERATIONS = 10

ALLOWED_ROLES = (
    "coordinator",
    "designer",
    "frontend",
    "frontend-developer",
    "backend",
    "backend-developer",
    "analyst",
    "writer",
    "reviewer",
)


class BuilderStatus(str, Enum):
    DRAFT = "draft"
    VALID = "valid"
    INVALID = "invalid"
    PUBLISHED = "published"


@dataclass(slots=True)
class TemplateMetadata:
    estimated_duration: str
    complexity: str
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    required_permissions: List[str] = field(default_factory=list)
    allowed_domains: List[str] = field(default_factory=list)


@dataclass(slots=True)
class WorkflowTemplate:
    id: str
    name: str
    description: str
    category: str
    config: WorkflowConfig
    metadata: TemplateMetadata
    tags: List[str] = field(default_factory=list)
    version: str = "1.0.0"
    author: str = "system"
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "version": self.version,
            "author": self.author,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "config": config_to_dict(self.config),
            "metadata": {
                "estimatedDuration": self.metadata.estimated_duration,
                "complexity": self.metadata.complexity,
                "maxIterations": self.metadata.max_iterations,
                "requiredPermissions": list(self.metadata.required_permissions),
                "allowedDomains": list(self.metadata.allowed_domains),
            },
        }


@dataclass(slots=True)
class WorkflowCategory:
    id: str
    name: str
    description: str
    icon: str
    color: str
    templates: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "templates": list(self.templates),
        }


@dataclass(slots=True)
class WorkflowDraft:
    """A workflow under construction."""

    name: str
    description: str
    author: str
    config: WorkflowConfig = field(default_factory=WorkflowConfig)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: BuilderStatus = BuilderStatus.DRAFT
    validation_results: List[ValidationResult] = field(default_factory=list)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: utcnow().isoformat())


# Declarative form


def node_from_dict(data: Mapping[str, Any]) -> AgentNode:
    try:
        return AgentNode(
            id=str(data["id"]),
            name=str(data["name"]),
            role=str(data["role"]),
            capabilities=[str(c) for c in data.get("capabilities", [])],
            priority=int(data.get("priority", 0)),
            description=str(data.get("description", "")),
        )
    except KeyError as exc:
        raise WorkflowBuildError(f"Agent node is missing '{exc.args[0]}'") from exc


def rule_from_dict(data: Mapping[str, Any]) -> RoutingRule:
    """Declarative rules fire for their target until it has contributed, unless ``repeat`` is set."""
    target = data.get("targetNode")
    if not target:
        raise WorkflowBuildError("Routing rule must have targetNode")
    phase = data.get("phase")
    guards = [] if data.get("repeat") else [not_contributed(target)]
    if phase:
        guards.append(phase_is(phase))
    return RoutingRule(
        condition=all_of(*guards) if guards else always,
        target_node=target,
        priority=int(data.get("priority", 0)),
        source_node=data.get("sourceNode"),
        phase=phase,
    )


def phase_from_dict(data: Mapping[str, Any]) -> WorkflowPhase:
    name = data.get("name")
    if not name:
        raise WorkflowBuildError("Phase must have a name")
    required = [str(a) for a in data.get("requiredAgents", [])]
    return WorkflowPhase(
        name=name,
        required_agents=required,
        completion_criteria=all_of(*(contributed(a) for a in required)),
        next_phase=data.get("nextPhase"),
    )


def config_from_dict(data: Mapping[str, Any]) -> WorkflowConfig:
    return WorkflowConfig(
        nodes=[node_from_dict(n) for n in data.get("nodes", [])],
        routing_rules=[rule_from_dict(r) for r in data.get("routingRules", [])],
        phases=[phase_from_dict(p) for p in data.get("phases", [])],
    )


def config_to_dict(config: WorkflowConfig) -> Dict[str, Any]:
    return {
        "nodes": [
            {
                "id": n.id,
                "name": n.name,
                "role": n.role,
                "capabilities": list(n.capabilities),
                "priority": n.priority,
                "description": n.description,
            }
            for n in config.nodes
        ],
        "routingRules": [
            {"targetNode": r.target_node, "priority": r.priority, "phase": r.phase, "sourceNode": r.source_node}
            for r in config.routing_rules
        ],
        "phases": [
            {"name": p.name, "requiredAgents": list(p.required_agents), "nextPhase": p.next_phase}
            for p in config.phases
        ],
    }


# Built-in templates


def _sequential_config(nodes: List[AgentNode], phases: List[tuple]) -> WorkflowConfig:
    """Each ``(phase, node_id)`` pair runs its node once, then hands over to the next phase."""
    rules = []
    workflow_phases = []
    for index, (phase_name, node_id) in enumerate(phases):
        rules.append(
            RoutingRule(
                condition=all_of(phase_is(phase_name), not_contributed(node_id)),
                target_node=node_id,
                priority=index + 1,
                phase=phase_name,
            )
        )
        next_phase = phases[index + 1][0] if index + 1 < len(phases) else "complete"
        workflow_phases.append(WorkflowPhase(phase_name, [node_id], contributed(node_id), next_phase))
    return WorkflowConfig(nodes=nodes, routing_rules=rules, phases=workflow_phases)


def web_development_config() -> WorkflowConfig:
    return _sequential_config(
        [
            AgentNode("coordinator", "Project Coordinator", "coordinator", ["planning", "coordination"], 1),
            AgentNode("designer", "UI/UX Designer", "designer", ["wireframes", "design"], 2),
            AgentNode("frontend", "Frontend Developer", "frontend", ["react", "ui"], 3),
            AgentNode("backend", "Backend Developer", "backend", ["api", "database"], 4),
        ],
        [("requirements", "coordinator"), ("design", "designer"), ("frontend", "frontend"), ("backend", "backend")],
    )


def ui_design_config() -> WorkflowConfig:
    return _sequential_config(
        [
            AgentNode("coordinator", "Design Coordinator", "coordinator", ["planning", "coordination"], 1),
            AgentNode("designer", "UI/UX Designer", "designer", ["wireframes", "design"], 2),
            AgentNode("reviewer", "Design Reviewer", "reviewer", ["review", "quality"], 3),
        ],
        [("requirements", "coordinator"), ("design", "designer"), ("review", "reviewer")],
    )


def data_analysis_config() -> WorkflowConfig:
    return _sequential_config(
        [
            AgentNode("coordinator", "Analysis Coordinator", "coordinator", ["planning", "coordination"], 1),
            AgentNode("analyst", "Data Analyst", "analyst", ["analysis", "research"], 2),
            AgentNode("reviewer", "Analysis Reviewer", "reviewer", ["review", "quality"], 3),
        ],
        [("requirements", "coordinator"), ("analysis", "analyst"), ("review", "reviewer")],
    )


def content_creation_config() -> WorkflowConfig:
    return _sequential_config(
        [
            AgentNode("coordinator", "Content Coordinator", "coordinator", ["planning", "coordination"], 1),
            AgentNode("writer", "Content Writer", "writer", ["content", "writing"], 2),
            AgentNode("reviewer", "Content Reviewer", "reviewer", ["review", "quality"], 3),
        ],
        [("requirements", "coordinator"), ("writing", "writer"), ("review", "reviewer")],
    )


def estimate_duration(config: WorkflowConfig) -> str:
    minutes = math.ceil(estimate_execution_time(config) / 60)
    if minutes <= 5:
        return "2-5 minutes"
    if minutes <= 10:
        return "5-10 minutes"
    if minutes <= 15:
        return "10-15 minutes"
    return "15+ minutes"


class WorkflowBuilder:
    """Creates, validates and publishes workflows; holds the template library."""

    def __init__(self, validator: Optional[WorkflowValidator] = None) -> None:
        self.validator = validator or WorkflowValidator()
        self._templates: List[WorkflowTemplate] = []
        self._categories: List[WorkflowCategory] = []
        self._install_defaults()

    def _install_defaults(self) -> None:
        defaults = (
            ("web-dev-template", "Web Development Workflow", "Complete web application development workflow",
             "development", ["web", "fullstack", "react", "node"], web_development_config(), 15),
            ("ui-design-template", "UI/UX Design Workflow", "User interface and experience design workflow",
             "design", ["design", "ui", "ux", "wireframes"], ui_design_config(), 10),
            ("data-analysis-template", "Data Analysis Workflow", "Data analysis and reporting workflow",
             "analysis", ["analysis", "data", "reporting", "insights"], data_analysis_config(), 12),
            ("content-creation-template", "Content Creation Workflow", "Content writing and editing workflow",
             "content", ["content", "writing", "editing", "marketing"], content_creation_config(), 8),
        )
        for template_id, name, description, category, tags, config, max_iterations in defaults:
            self._templates.append(
                WorkflowTemplate(
                    id=template_id,
                    name=name,
                    description=description,
                    category=category,
                    tags=tags,
                    config=config,
                    metadata=TemplateMetadata(
                        estimated_duration=estimate_duration(config),
                        complexity=self.validator.complexity(config),
                        max_iterations=max_iterations,
                        required_permissions=[category],
                    ),
                )
            )

        self._categories = [
            WorkflowCategory("development", "Development", "Software development workflows", "💻", "#3B82F6",
                             ["web-dev-template"]),
            WorkflowCategory("design", "Design", "UI/UX and graphic design workflows", "🎨", "#EC4899",
                             ["ui-design-template"]),
            WorkflowCategory("analysis", "Analysis", "Data analysis and research workflows", "📊", "#10B981",
                             ["data-analysis-template"]),
            WorkflowCategory("content", "Content", "Content creation and editing workflows", "✍️", "#F59E0B",
                             ["content-creation-template"]),
        ]

    # Drafts

    def create_builder(self, name: str, description: str, author: str) -> WorkflowDraft:
        return WorkflowDraft(name=name, description=description, author=author)

    def _revalidate(self, draft: WorkflowDraft) -> WorkflowDraft:
        draft.validation_results = self.validator.validate(draft.config)
        draft.status = BuilderStatus.VALID if self.validator.is_safe(draft.config) else BuilderStatus.INVALID
        draft.updated_at = utcnow().isoformat()
        return draft

    def add_agent(self, draft: WorkflowDraft, node: AgentNode) -> WorkflowDraft:
        if not node.id or not node.name or not node.role:
            raise WorkflowBuildError("Agent must have id, name, and role")
        if draft.config.node(node.id) is not None:
            raise WorkflowBuildError(f"Agent with ID '{node.id}' already exists")
        if node.role not in ALLOWED_ROLES:
            raise WorkflowBuildError(
                f"Role '{node.role}' is not allowed. Allowed roles: {', '.join(ALLOWED_ROLES)}",
                details={"allowedRoles": list(ALLOWED_ROLES)},
            )
        draft.config = draft.config.copy(nodes=[*draft.config.nodes, node])
        return self._revalidate(draft)

    def add_phase(self, draft: WorkflowDraft, phase: WorkflowPhase) -> WorkflowDraft:
        if not phase.name:
            raise WorkflowBuildError("Phase must have name and requiredAgents")
        if any(p.name == phase.name for p in draft.config.phases):
            raise WorkflowBuildError(f"Phase with name '{phase.name}' already exists")
        missing = [a for a in phase.required_agents if draft.config.node(a) is None]
        if missing:
            raise WorkflowBuildError(f"Required agents not found: {', '.join(missing)}")
        draft.config = draft.config.copy(phases=[*draft.config.phases, phase])
        return self._revalidate(draft)

    def add_routing_rule(self, draft: WorkflowDraft, rule: RoutingRule) -> WorkflowDraft:
        if not rule.target_node or not callable(rule.condition):
            raise WorkflowBuildError("Routing rule must have targetNode and condition")
        if draft.config.node(rule.target_node) is None:
            raise WorkflowBuildError(f"Target node '{rule.target_node}' does not exist")
        if rule.source_node and draft.config.node(rule.source_node) is None:
            raise WorkflowBuildError(f"Source node '{rule.source_node}' does not exist")
        draft.config = draft.config.copy(routing_rules=[*draft.config.routing_rules, rule])
        return self._revalidate(draft)

    def validate_builder(self, draft: WorkflowDraft) -> List[ValidationResult]:
        results = self.validator.validate(draft.config)
        complexity = self.validator.complexity(draft.config)
        results.append(
            ValidationResult(
                rule_id="complexity-analysis",
                rule_name="Workflow Complexity",
                severity=Severity.WARNING if complexity == "complex" else Severity.INFO,
                passed=True,
                message=f"Workflow complexity: {complexity}",
                suggestions=self.validator.suggestions(draft.config),
            )
        )
        return results

    def autofix_builder(self, draft: WorkflowDraft) -> WorkflowDraft:
        draft.config = self.validator.autofix(draft.config)
        return self._revalidate(draft)

    def publish(self, draft: WorkflowDraft) -> WorkflowTemplate:
        results = self.validator.validate(draft.config)
        failures = [r for r in results if r.severity is Severity.ERROR and not r.passed]
        if failures:
            raise WorkflowPublishError(
                "Cannot publish invalid workflow. Please fix validation errors first.",
                details={"failures": [r.to_dict() for r in failures]},
            )

        template = WorkflowTemplate(
            id=str(uuid.uuid4()),
            name=draft.name,
            description=draft.description,
            category="custom",
            author=draft.author,
            created_at=draft.created_at,
            config=draft.config.copy(),
            metadata=TemplateMetadata(
                estimated_duration=estimate_duration(draft.config),
                complexity=self.validator.complexity(draft.config),
                max_iterations=draft.max_iterations,
                allowed_domains=["custom"],
            ),
        )
        draft.status = BuilderStatus.PUBLISHED
        draft.validation_results = results
        self._templates.append(template)
        logger.info(f"Published workflow template {template.name} ({template.id})")
        return template

    # Library

    def templates(self, category: Optional[str] = None) -> List[WorkflowTemplate]:
        if category:
            return [t for t in self._templates if t.category == category]
        return list(self._templates)

    def template(self, template_id: str) -> WorkflowTemplate:
        template = next((t for t in self._templates if t.id == template_id), None)
        if template is None:
            raise TemplateNotFoundError(f"Template with ID '{template_id}' not found")
        return template

    def categories(self) -> List[WorkflowCategory]:
        return list(self._categories)

    def clone_template(self, template_id: str, name: str, author: str) -> WorkflowDraft:
        template = self.template(template_id)
        return WorkflowDraft(
            name=name,
            description=f"Clone of {template.name}",
            author=author,
            config=template.config.copy(),
            max_iterations=template.metadata.max_iterations,
        )

"""Declarative, user-authorable workflow definitions and validation records."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from agentcollab.core.models import WorkflowState, utcnow

StatePredicate = Callable[[WorkflowState], bool]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class RuleType(str, Enum):
    SYNTAX = "syntax"
    SEMANTIC = "semantic"
    SAFETY = "safety"
    PERFORMANCE = "performance"
    RESOURCE = "resource"


class SafetyAction(str, Enum):
    BLOCK = "block"
    WARN = "warn"
    LOG = "log"


@dataclass(slots=True)
class AgentNode:
    id: str
    name: str
    role: str
    capabilities: List[str] = field(default_factory=list)
    priority: int = 0
    description: str = ""


@dataclass(slots=True)
class RoutingRule:
    """Route to ``target_node`` whenever ``condition`` holds.

    ``source_node`` narrows the rule to fire only after that node has run;
    without it the rule may fire after any node.
    """

    condition: StatePredicate
    target_node: str
    priority: int = 0
    source_node: Optional[str] = None
    phase: Optional[str] = None


@dataclass(slots=True)
class WorkflowPhase:
    name: str
    required_agents: List[str] = field(default_factory=list)
    completion_criteria: Optional[StatePredicate] = None
    next_phase: Optional[str] = None


@dataclass(slots=True)
class WorkflowConfig:
    nodes: List[AgentNode] = field(default_factory=list)
    routing_rules: List[RoutingRule] = field(default_factory=list)
    phases: List[WorkflowPhase] = field(default_factory=list)

    def copy(self, **changes: Any) -> WorkflowConfig:
        """Shallow structural copy; list fields are never shared with the original."""
        base = replace(
            self,
            nodes=list(self.nodes),
            routing_rules=list(self.routing_rules),
            phases=list(self.phases),
        )
        return replace(base, **changes) if changes else base

    def node(self, node_id: str) -> Optional[AgentNode]:
        return next((n for n in self.nodes if n.id == node_id), None)


@dataclass(slots=True)
class ValidationResult:
    rule_id: str
    rule_name: str
    severity: Severity
    passed: bool
    message: str
    suggestions: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "severity": self.severity.value,
            "passed": self.passed,
            "message": self.message,
            "suggestions": list(self.suggestions),
            "timestamp": self.timestamp,
        }


# Predicate helpers used by templates and the declarative builder form.


def phase_is(name: str) -> StatePredicate:
    return lambda state: state.phase == name


def not_contributed(node_id: str) -> StatePredicate:
    return lambda state: node_id not in state.agent_outputs


def contributed(node_id: str) -> StatePredicate:
    return lambda state: node_id in state.agent_outputs


def all_of(*predicates: StatePredicate) -> StatePredicate:
    return lambda state: all(p(state) for p in predicates)


def always(_state: WorkflowState) -> bool:
    return True

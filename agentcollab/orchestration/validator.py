"""Static validation, auto-fixing and runtime safety checks for workflow configs."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from loguru import logger

from agentcollab.core.models import ParsedContribution, StepStatus, WorkflowState, utcnow
from agentcollab.core.workflow import (
    AgentNode,
    RoutingRule,
    RuleType,
    SafetyAction,
    Severity,
    ValidationResult,
    WorkflowConfig,
    WorkflowPhase,
    always,
)

MAX_NODES = 10
MAX_PHASES = 6
MAX_AGENTS_PER_PHASE = 3
SECONDS_PER_AGENT_PHASE = 30
DEFAULT_MAX_EXECUTION_TIME = 300
MAX_ERROR_RATE = 0.3
AUTOFIX_PASSES = 5

PHASE_ORDER = ("requirements", "design", "frontend", "backend", "integration", "complete")

FORBIDDEN_KEYWORDS = (
    "hack",
    "exploit",
    "bypass",
    "unauthorized",
    "illegal",
    "malicious",
    "delete all",
    "wipe",
    "corrupt",
    "inject",
    "sql injection",
    "xss",
    "csrf",
    "ddos",
    "brute force",
    "password crack",
)

ROLE_CAPABILITIES: Dict[str, Sequence[str]] = {
    "coordinator": ("planning", "coordination", "management"),
    "designer": ("wireframe", "design", "ui", "ux"),
    "frontend": ("react", "ui", "component", "frontend"),
    "frontend-developer": ("react", "ui", "component", "frontend"),
    "backend": ("api", "database", "backend", "server"),
    "backend-developer": ("api", "database", "backend", "server"),
    "analyst": ("analysis", "research", "data"),
    "writer": ("content", "writing", "copy"),
    "reviewer": ("review", "quality", "testing"),
}

_VALID_ID = re.compile(r"^[A-Za-z0-9_-]+$")

ConfigCondition = Callable[[WorkflowConfig], bool]
ConfigFix = Callable[[WorkflowConfig], WorkflowConfig]
SafetyCondition = Callable[[Optional[WorkflowConfig], WorkflowState], bool]


@dataclass(slots=True)
class ValidationRule:
    id: str
    name: str
    description: str
    type: RuleType
    severity: Severity
    condition: ConfigCondition
    message: str
    fix: Optional[ConfigFix] = None


@dataclass(slots=True)
class WorkflowConstraint:
    id: str
    name: str
    description: str
    condition: ConfigCondition
    message: str


@dataclass(slots=True)
class SafetyCheck:
    id: str
    name: str
    description: str
    action: SafetyAction
    check: SafetyCondition
    message: str


@dataclass(slots=True)
class SafetyReport:
    """Outcome of the runtime safety checks for one step."""

    results: List[ValidationResult] = field(default_factory=list)
    blocked: List[ValidationResult] = field(default_factory=list)
    warnings: List[ValidationResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.blocked


# Routing graph


def _probe(phase: str, contributed: Iterable[str]) -> WorkflowState:
    return WorkflowState(
        conversation_id="validator-probe",
        current_input="",
        phase=phase,
        max_rounds=1,
        agent_outputs={
            node_id: ParsedContribution(agent_id=node_id, round=1, message="") for node_id in contributed
        },
    )


def rule_can_reenter(rule: RoutingRule, config: WorkflowConfig) -> bool:
    """Whether ``rule`` may still fire after its target has already contributed.

    Conditions are opaque predicates, so they are evaluated on probe states: every
    declared phase (or the rule's own phase) plus ``any``, with either only the
    target or every node marked as contributed.
    """
    phases = [rule.phase] if rule.phase else [p.name for p in config.phases] + ["any"]
    everyone = [n.id for n in config.nodes]
    for phase in phases:
        for contributed in ([rule.target_node], everyone):
            try:
                if rule.condition(_probe(phase, contributed)):
                    return True
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"Routing condition for {rule.target_node} raised on probe: {exc}")
                return True
    return False


def _add_edges(graph: Dict[str, Set[str]], rule: RoutingRule, config: WorkflowConfig) -> None:
    if rule.target_node not in graph or not rule_can_reenter(rule, config):
        return
    sources = [rule.source_node] if rule.source_node else list(graph)
    for source in sources:
        if source in graph:
            graph[source].add(rule.target_node)


def routing_graph(config: WorkflowConfig, rules: Optional[Sequence[RoutingRule]] = None) -> Dict[str, Set[str]]:
    graph: Dict[str, Set[str]] = {node.id: set() for node in config.nodes}
    for rule in config.routing_rules if rules is None else rules:
        _add_edges(graph, rule, config)
    return graph


def has_cycle(graph: Dict[str, Set[str]]) -> bool:
    """Iterative DFS keeping an explicit recursion stack; a back-edge means a cycle."""
    visited: Set[str] = set()
    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_stack = {root}
        stack = [(root, iter(sorted(graph[root])))]
        while stack:
            node, neighbours = stack[-1]
            neighbour = next(neighbours, None)
            if neighbour is None:
                stack.pop()
                on_stack.discard(node)
                continue
            if neighbour in on_stack:
                return True
            if neighbour not in visited and neighbour in graph:
                visited.add(neighbour)
                on_stack.add(neighbour)
                stack.append((neighbour, iter(sorted(graph[neighbour]))))
    return False


def estimate_execution_time(config: WorkflowConfig) -> int:
    return len(config.nodes) * len(config.phases) * SECONDS_PER_AGENT_PHASE


# Fixes


def _sanitise_ids(config: WorkflowConfig) -> WorkflowConfig:
    mapping: Dict[str, str] = {}
    seen: Set[str] = set()
    nodes: List[AgentNode] = []
    for index, node in enumerate(config.nodes):
        base = re.sub(r"[^A-Za-z0-9_-]", "_", node.id) or f"node_{index}"
        candidate = base
        suffix = 2
        while candidate in seen:
            candidate = f"{base}_{suffix}"
            suffix += 1
        seen.add(candidate)
        mapping.setdefault(node.id, candidate)
        nodes.append(AgentNode(candidate, node.name, node.role, list(node.capabilities), node.priority, node.description))

    rules = [
        RoutingRule(
            condition=rule.condition,
            target_node=mapping.get(rule.target_node, rule.target_node),
            priority=rule.priority,
            source_node=mapping.get(rule.source_node, rule.source_node) if rule.source_node else None,
            phase=rule.phase,
        )
        for rule in config.routing_rules
    ]
    phases = [
        WorkflowPhase(
            name=phase.name,
            required_agents=[mapping.get(a, a) for a in phase.required_agents],
            completion_criteria=phase.completion_criteria,
            next_phase=phase.next_phase,
        )
        for phase in config.phases
    ]
    return config.copy(nodes=nodes, routing_rules=rules, phases=phases)


def _drop_dangling_rules(config: WorkflowConfig) -> WorkflowConfig:
    ids = {n.id for n in config.nodes}
    rules = [
        r for r in config.routing_rules if r.target_node in ids and (r.source_node is None or r.source_node in ids)
    ]
    return config.copy(routing_rules=rules)


def _fill_completion_criteria(config: WorkflowConfig) -> WorkflowConfig:
    phases = [
        WorkflowPhase(p.name, list(p.required_agents), p.completion_criteria or always, p.next_phase)
        for p in config.phases
    ]
    return config.copy(phases=phases)


def _drop_cycle_rules(config: WorkflowConfig) -> WorkflowConfig:
    kept: List[RoutingRule] = []
    for rule in config.routing_rules:
        if has_cycle(routing_graph(config, kept + [rule])):
            logger.info(f"Dropping routing rule to {rule.target_node}: it closes a cycle")
            continue
        kept.append(rule)
    return config.copy(routing_rules=kept)


# Conditions


def _ids_valid(config: WorkflowConfig) -> bool:
    ids = [n.id for n in config.nodes]
    return len(ids) == len(set(ids)) and all(_VALID_ID.match(i) for i in ids)


def _rules_resolve(config: WorkflowConfig) -> bool:
    ids = {n.id for n in config.nodes}
    return all(
        r.target_node in ids and (r.source_node is None or r.source_node in ids) for r in config.routing_rules
    )


def _roles_consistent(config: WorkflowConfig) -> bool:
    for node in config.nodes:
        expected = ROLE_CAPABILITIES.get(node.role.lower())
        if expected is None:
            continue
        capabilities = [c.lower() for c in node.capabilities]
        if not any(keyword in cap for cap in capabilities for keyword in expected):
            return False
    return True


def _phase_order_ok(config: WorkflowConfig) -> bool:
    known = [PHASE_ORDER.index(p.name) for p in config.phases if p.name in PHASE_ORDER]
    return all(a <= b for a, b in zip(known, known[1:]))


class WorkflowValidator:
    """Runs the rule battery, constraints and runtime safety checks."""

    def __init__(
        self,
        max_execution_time: int = DEFAULT_MAX_EXECUTION_TIME,
        forbidden_keywords: Sequence[str] = FORBIDDEN_KEYWORDS,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_execution_time = max_execution_time
        self._forbidden = [
            re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE) for keyword in forbidden_keywords
        ]
        self._now = now
        self.rules = self._default_rules()
        self.constraints = self._default_constraints()
        self.safety_checks = self._default_safety_checks()

    def _default_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(
                "syntax-001",
                "Valid Node IDs",
                "All nodes must have valid, unique IDs",
                RuleType.SYNTAX,
                Severity.ERROR,
                _ids_valid,
                "All nodes must have unique, alphanumeric IDs (letters, numbers, underscores, hyphens only)",
                _sanitise_ids,
            ),
            ValidationRule(
                "syntax-002",
                "Valid Routing Rules",
                "All routing rules must reference existing nodes",
                RuleType.SYNTAX,
                Severity.ERROR,
                _rules_resolve,
                "All routing rules must reference existing node IDs",
                _drop_dangling_rules,
            ),
            ValidationRule(
                "semantic-001",
                "Phase Completeness",
                "All phases must have completion criteria",
                RuleType.SEMANTIC,
                Severity.ERROR,
                lambda config: all(callable(p.completion_criteria) for p in config.phases),
                "All phases must have completion criteria functions",
                _fill_completion_criteria,
            ),
            ValidationRule(
                "semantic-002",
                "Agent Role Consistency",
                "Agent roles must be consistent with their capabilities",
                RuleType.SEMANTIC,
                Severity.WARNING,
                _roles_consistent,
                "Agent capabilities should match their roles",
            ),
            ValidationRule(
                "safety-001",
                "No Infinite Loops",
                "Workflow must not have routing cycles",
                RuleType.SAFETY,
                Severity.ERROR,
                lambda config: not has_cycle(routing_graph(config)),
                "Workflow contains potential infinite loops",
                _drop_cycle_rules,
            ),
            ValidationRule(
                "safety-002",
                "Execution Time Limit",
                "Workflow must have reasonable execution time",
                RuleType.SAFETY,
                Severity.WARNING,
                lambda config: estimate_execution_time(config) <= self.max_execution_time,
                "Workflow execution time may be too long",
            ),
            ValidationRule(
                "resource-001",
                "Agent Count Limit",
                f"Workflow may not have more than {MAX_NODES} agents",
                RuleType.RESOURCE,
                Severity.ERROR,
                lambda config: len(config.nodes) <= MAX_NODES,
                f"Workflow exceeds the limit of {MAX_NODES} agents",
                lambda config: config.copy(nodes=config.nodes[:MAX_NODES]),
            ),
            ValidationRule(
                "resource-002",
                "Phase Count Limit",
                f"Workflow may not have more than {MAX_PHASES} phases",
                RuleType.RESOURCE,
                Severity.ERROR,
                lambda config: len(config.phases) <= MAX_PHASES,
                f"Workflow exceeds the limit of {MAX_PHASES} phases",
                lambda config: config.copy(phases=config.phases[:MAX_PHASES]),
            ),
            ValidationRule(
                "performance-002",
                "Phase Complexity",
                "Phases should not be overly complex",
                RuleType.PERFORMANCE,
                Severity.INFO,
                lambda config: all(len(p.required_agents) <= MAX_AGENTS_PER_PHASE for p in config.phases),
                "Phases with many required agents may be complex",
            ),
        ]

    @staticmethod
    def _default_constraints() -> List[WorkflowConstraint]:
        return [
            WorkflowConstraint(
                "constraint-001",
                "Required Coordinator",
                "Workflow must have a coordinator agent",
                lambda config: any(n.role == "coordinator" for n in config.nodes),
                "Workflow must include a coordinator agent",
            ),
            WorkflowConstraint(
                "constraint-002",
                "Phase Order",
                "Phases must follow logical order",
                _phase_order_ok,
                "Phases must follow logical development order",
            ),
        ]

    def _default_safety_checks(self) -> List[SafetyCheck]:
        return [
            SafetyCheck(
                "safety-check-001",
                "Forbidden Keywords",
                "Check the request and agent definitions for forbidden keywords",
                SafetyAction.BLOCK,
                self._no_forbidden_keywords,
                "Workflow contains forbidden keywords",
            ),
            SafetyCheck(
                "safety-check-002",
                "Execution Timeout",
                "Check if workflow execution is taking too long",
                SafetyAction.WARN,
                self._within_time_budget,
                "Workflow execution is taking longer than expected",
            ),
            SafetyCheck(
                "safety-check-003",
                "Error Rate",
                "Check if workflow has too many errors",
                SafetyAction.WARN,
                lambda _config, state: _error_rate(state) <= MAX_ERROR_RATE,
                "Workflow has high error rate",
            ),
        ]

    def _no_forbidden_keywords(self, config: Optional[WorkflowConfig], state: WorkflowState) -> bool:
        texts = [state.current_input]
        if config is not None:
            texts.extend(f"{n.name} {n.description}" for n in config.nodes)
        return not any(pattern.search(text) for text in texts for pattern in self._forbidden)

    def _within_time_budget(self, _config: Optional[WorkflowConfig], state: WorkflowState) -> bool:
        if not state.workflow_history:
            return True
        elapsed = (self._now() - state.workflow_history[0].timestamp).total_seconds()
        return elapsed <= self.max_execution_time

    # Public API

    def validate(self, config: WorkflowConfig) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        for rule in self.rules:
            passed = bool(rule.condition(config))
            results.append(
                ValidationResult(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    severity=rule.severity,
                    passed=passed,
                    message="Passed" if passed else rule.message,
                    suggestions=[] if passed or rule.fix is None else ["Auto-fix available"],
                )
            )
        for constraint in self.constraints:
            passed = bool(constraint.condition(config))
            results.append(
                ValidationResult(
                    rule_id=constraint.id,
                    rule_name=constraint.name,
                    severity=Severity.ERROR,
                    passed=passed,
                    message="Passed" if passed else constraint.message,
                )
            )
        return results

    def autofix(self, config: WorkflowConfig) -> WorkflowConfig:
        """Apply fixes of failing rules until none of the fixable rules fail."""
        fixable = sorted(
            (r for r in self.rules if r.fix is not None),
            key=lambda r: 0 if r.type is RuleType.RESOURCE else 1,
        )
        fixed = config.copy()
        for _ in range(AUTOFIX_PASSES):
            applied = False
            for rule in fixable:
                if not rule.condition(fixed):
                    logger.debug(f"Auto-fixing {rule.id}")
                    fixed = rule.fix(fixed)
                    applied = True
            if not applied:
                break
        return fixed

    def is_safe(self, config: WorkflowConfig) -> bool:
        return not any(r.severity is Severity.ERROR and not r.passed for r in self.validate(config))

    def run_safety_checks(self, config: Optional[WorkflowConfig], state: WorkflowState) -> SafetyReport:
        report = SafetyReport()
        for check in self.safety_checks:
            passed = bool(check.check(config, state))
            severity = {
                SafetyAction.BLOCK: Severity.ERROR,
                SafetyAction.WARN: Severity.WARNING,
                SafetyAction.LOG: Severity.INFO,
            }[check.action]
            result = ValidationResult(
                rule_id=check.id,
                rule_name=check.name,
                severity=severity,
                passed=passed,
                message="Passed" if passed else check.message,
            )
            report.results.append(result)
            if passed:
                continue
            if check.action is SafetyAction.BLOCK:
                report.blocked.append(result)
            elif check.action is SafetyAction.WARN:
                report.warnings.append(result)
                logger.warning(f"Safety check {check.name} failed for {state.conversation_id}: {check.message}")
            else:
                logger.info(f"Safety check {check.name} noted for {state.conversation_id}: {check.message}")
        return report

    @staticmethod
    def complexity(config: WorkflowConfig) -> str:
        score = len(config.nodes) + len(config.phases) + len(config.routing_rules)
        if score <= 5:
            return "simple"
        if score <= 10:
            return "moderate"
        return "complex"

    def suggestions(self, config: WorkflowConfig) -> List[str]:
        suggestions: List[str] = []
        if self.complexity(config) == "complex":
            suggestions.append("Consider breaking down into smaller workflows")
            suggestions.append("Reduce the number of agents or phases")
        if len(config.nodes) > 5:
            suggestions.append("Consider consolidating similar agent roles")
        if len(config.phases) > 4:
            suggestions.append("Consider combining related phases")
        if estimate_execution_time(config) > self.max_execution_time:
            suggestions.append("Workflow may take too long to execute")
        return suggestions


def _error_rate(state: WorkflowState) -> float:
    if not state.workflow_history:
        return 0.0
    errors = sum(1 for step in state.workflow_history if step.status is StepStatus.ERROR)
    return errors / len(state.workflow_history)

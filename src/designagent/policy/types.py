"""Shared types for the policy engine.

This module provides:
- PolicyError, PolicyConfigError, ExpressionSyntaxError,
  ExpressionEvaluationError: Exception classes
- RuleAction: What a matching rule does
- Rule, PolicySettings, PolicyConfig: Rule set configuration
- ToolDescriptor, EvaluationContext: Input to PolicyEngine.evaluate
- PolicyDecision: Output of PolicyEngine.evaluate
- PolicyStats: Counters for observability
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from designagent.policy.expressions import Expression

DEFAULT_PRIORITY = 100
DEFAULT_MAX_SESSION_COST = 1.0


class PolicyError(Exception):
    """Base exception for policy errors."""


class PolicyConfigError(PolicyError):
    """Rule set could not be parsed or failed validation."""


class ExpressionSyntaxError(PolicyConfigError):
    """Condition or transform expression is malformed or not allowed."""


class ExpressionEvaluationError(PolicyError):
    """Expression failed at evaluation time (type error, null access, ...)."""


class RuleAction(str, Enum):
    """Action taken when a rule's condition matches.

    Declaration order is precedence order: when several rules match,
    the decision uses the first action in this list that matched.
    """

    BLOCK = "block"
    REQUIRE_CONFIRMATION = "require_confirmation"
    TRANSFORM = "transform"
    WARN = "warn"


ACTION_PRECEDENCE: tuple[RuleAction, ...] = tuple(RuleAction)


@dataclass
class Rule:
    """A named condition/action pair.

    Attributes:
        name: Unique rule name.
        condition: Expression over tool, context and args.
        action: Action when the condition matches.
        message: User-facing explanation.
        priority: Lower value = evaluated first (default 100).
        enabled: Disabled rules are skipped.
        transform: Expression producing replacement args (transform action).
    """

    name: str
    condition: str
    action: RuleAction
    message: str
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True
    transform: str | None = None

    # Compiled forms, filled in by the loader
    compiled_condition: Expression | None = field(
        default=None, repr=False, compare=False
    )
    compiled_transform: Expression | None = field(
        default=None, repr=False, compare=False
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the YAML/JSON rule shape."""
        data: dict[str, Any] = {
            "name": self.name,
            "condition": self.condition,
            "action": self.action.value,
            "message": self.message,
            "priority": self.priority,
            "enabled": self.enabled,
        }
        if self.transform is not None:
            data["transform"] = self.transform
        return data


@dataclass
class PolicySettings:
    """Global policy settings."""

    confirmations_enabled: bool = True
    max_session_cost: float = DEFAULT_MAX_SESSION_COST


@dataclass
class PolicyConfig:
    """A complete rule set."""

    version: str
    rules: list[Rule] = field(default_factory=list)
    settings: PolicySettings = field(default_factory=PolicySettings)


@dataclass
class ToolDescriptor:
    """The tool an agent wants to invoke."""

    name: str
    method: str = "GET"
    path: str = ""
    mutates: bool = False
    requires_confirmation: bool = False

    def to_binding(self) -> dict[str, Any]:
        """Expression-visible view (camelCase, like the wire format)."""
        return {
            "name": self.name,
            "method": self.method,
            "path": self.path,
            "mutates": self.mutates,
            "requiresConfirmation": self.requires_confirmation,
        }


@dataclass
class EvaluationContext:
    """Input to PolicyEngine.evaluate.

    Attributes:
        tool: The tool being invoked.
        context: Session context (sessionCost, serviceId, userId, ...),
            keyed the way conditions reference it.
        args: Invocation arguments.
    """

    tool: ToolDescriptor
    context: dict[str, Any] = field(default_factory=dict)
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class PolicyDecision:
    """Result of evaluating the rule set.

    Attributes:
        allowed: Whether execution may proceed (False for block and
            require_confirmation until confirmed).
        action: Deciding action, or None when no rule matched.
        rule: Deciding rule.
        message: Deciding rule's message.
        transformed_args: Replacement args (transform action only).
        matched_rules: Every matching rule, in evaluation order.
    """

    allowed: bool
    action: RuleAction | None = None
    rule: Rule | None = None
    message: str | None = None
    transformed_args: dict[str, Any] | None = None
    matched_rules: list[Rule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "allowed": self.allowed,
            "action": self.action.value if self.action else None,
            "rule": self.rule.name if self.rule else None,
            "message": self.message,
            "transformedArgs": self.transformed_args,
            "matchedRules": [r.name for r in self.matched_rules],
        }


@dataclass
class PolicyStats:
    """Counters for the policy engine.

    condition_errors and transform_errors count fail-open occurrences,
    so misconfigured rules stay discoverable.
    """

    evaluations: int = 0
    blocked: int = 0
    confirmations: int = 0
    transforms: int = 0
    warnings: int = 0
    condition_errors: int = 0
    transform_errors: int = 0

"""Policy engine gating agent tool invocations.

This module provides:
- PolicyEngine: Evaluates an ordered rule set against a tool invocation
  and decides block / require_confirmation / transform / warn / allow

Decision precedence is fixed: block > require_confirmation > transform
> warn > none. Rules are tried in ascending priority order; the first
matching rule of each action decides for that action.

Condition errors at evaluation time are fail-open: the rule is treated
as non-matching, a warning is logged and PolicyStats.condition_errors is
incremented. Transform errors pass the original args through.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from designagent.policy.rules import (
    build_rule,
    config_from_dict,
    get_default_rules_content,
    load_rules_file,
    parse_rules,
)
from designagent.policy.types import (
    ACTION_PRECEDENCE,
    EvaluationContext,
    ExpressionEvaluationError,
    PolicyConfig,
    PolicyConfigError,
    PolicyDecision,
    PolicyStats,
    Rule,
    RuleAction,
)

logger = logging.getLogger(__name__)


class PolicyEngine:
    """Evaluates policy rules for tool invocations.

    The engine starts with the embedded default rule set. Rules can be
    replaced wholesale (load_rules, load_config, load_file) or edited in
    place (add_rule, remove_rule, set_rule_enabled).

    Usage:
        engine = PolicyEngine()
        decision = engine.evaluate(EvaluationContext(
            tool=ToolDescriptor(name="deleteService", method="DELETE"),
            context={"sessionCost": 0.12},
        ))
        if decision.action is RuleAction.REQUIRE_CONFIRMATION:
            ...
    """

    def __init__(self, config: PolicyConfig | None = None) -> None:
        """Initialize the engine.

        Args:
            config: Initial rule set. Defaults to the embedded rules.
        """
        self._config = config or parse_rules(get_default_rules_content())
        self._stats = PolicyStats()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def load_rules(self, yaml_content: str) -> None:
        """Replace the rule set from a YAML document.

        Raises:
            PolicyConfigError: If the document is invalid. The current rule
                set is left untouched.
        """
        self._config = parse_rules(yaml_content)
        logger.info(
            "Loaded %d policy rules (version %s)",
            len(self._config.rules),
            self._config.version,
        )

    def load_config(self, config: PolicyConfig | Mapping[str, Any]) -> None:
        """Replace the rule set from a config object or document mapping.

        Rules of a PolicyConfig are re-validated so uncompiled rules are
        never evaluated.

        Raises:
            PolicyConfigError: If any rule is invalid.
        """
        if isinstance(config, PolicyConfig):
            config = PolicyConfig(
                version=config.version,
                rules=[build_rule(rule) for rule in config.rules],
                settings=config.settings,
            )
        else:
            config = config_from_dict(config)
        self._config = config
        logger.info("Loaded %d policy rules (version %s)", len(config.rules), config.version)

    def load_file(self, path: Path) -> None:
        """Replace the rule set from a YAML file."""
        self._config = load_rules_file(path)
        logger.info("Loaded %d policy rules from %s", len(self._config.rules), path)

    def get_config(self) -> PolicyConfig:
        """Get the current configuration."""
        return self._config

    @property
    def stats(self) -> PolicyStats:
        """Evaluation counters."""
        return self._stats

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(self, ctx: EvaluationContext) -> PolicyDecision:
        """Evaluate all enabled rules against a tool invocation.

        Args:
            ctx: Tool, session context and args of the invocation.

        Returns:
            The decision. Never raises.
        """
        self._stats.evaluations += 1
        bindings = self._bindings(ctx)

        matched: list[Rule] = []
        first_by_action: dict[RuleAction, Rule] = {}

        rules = sorted(
            (r for r in self._config.rules if r.enabled),
            key=lambda r: r.priority,
        )
        for rule in rules:
            if self._condition_matches(rule, bindings):
                matched.append(rule)
                first_by_action.setdefault(rule.action, rule)

        for action in ACTION_PRECEDENCE:
            rule = first_by_action.get(action)
            if rule is not None:
                return self._decide(action, rule, matched, ctx, bindings)

        return PolicyDecision(allowed=True, matched_rules=matched)

    def _decide(
        self,
        action: RuleAction,
        rule: Rule,
        matched: list[Rule],
        ctx: EvaluationContext,
        bindings: dict[str, Any],
    ) -> PolicyDecision:
        if action is RuleAction.BLOCK:
            self._stats.blocked += 1
            logger.info("Tool %s blocked by rule %s", ctx.tool.name, rule.name)
            return PolicyDecision(
                allowed=False,
                action=action,
                rule=rule,
                message=rule.message,
                matched_rules=matched,
            )

        if action is RuleAction.REQUIRE_CONFIRMATION:
            self._stats.confirmations += 1
            return PolicyDecision(
                allowed=False,  # Not allowed until confirmed
                action=action,
                rule=rule,
                message=rule.message,
                matched_rules=matched,
            )

        if action is RuleAction.TRANSFORM:
            self._stats.transforms += 1
            return PolicyDecision(
                allowed=True,
                action=action,
                rule=rule,
                message=rule.message,
                transformed_args=self._apply_transform(rule, ctx, bindings),
                matched_rules=matched,
            )

        self._stats.warnings += 1
        return PolicyDecision(
            allowed=True,
            action=action,
            rule=rule,
            message=rule.message,
            matched_rules=matched,
        )

    def _bindings(self, ctx: EvaluationContext) -> dict[str, Any]:
        """Build the only names visible to expressions."""
        context = dict(ctx.context)
        context.setdefault("maxSessionCost", self.get_max_session_cost())
        return {
            "tool": ctx.tool.to_binding(),
            "context": context,
            "args": dict(ctx.args),
        }

    def _condition_matches(self, rule: Rule, bindings: dict[str, Any]) -> bool:
        """Evaluate a rule condition, failing open on errors."""
        try:
            condition = rule.compiled_condition
            if condition is None:
                # Appended to config.rules directly, bypassing add_rule
                condition = rule.compiled_condition = build_rule(rule).compiled_condition
            if condition is None:
                raise PolicyConfigError(f"Rule {rule.name!r} has no compiled condition")
            return condition.test(bindings)
        except (ExpressionEvaluationError, PolicyConfigError) as e:
            self._stats.condition_errors += 1
            logger.warning(
                "Error evaluating condition of rule %s (%r), treating as non-matching: %s",
                rule.name,
                rule.condition,
                e,
            )
            return False

    def _apply_transform(
        self,
        rule: Rule,
        ctx: EvaluationContext,
        bindings: dict[str, Any],
    ) -> dict[str, Any]:
        """Compute replacement args, passing the originals through on failure."""
        if rule.compiled_transform is None:
            return dict(ctx.args)
        try:
            result = rule.compiled_transform.evaluate(bindings)
        except ExpressionEvaluationError as e:
            self._stats.transform_errors += 1
            logger.warning(
                "Error applying transform of rule %s (%r), passing args through: %s",
                rule.name,
                rule.transform,
                e,
            )
            return dict(ctx.args)

        if isinstance(result, Mapping):
            return dict(result)

        self._stats.transform_errors += 1
        logger.warning(
            "Transform of rule %s returned %s instead of an object, passing args through",
            rule.name,
            type(result).__name__,
        )
        return dict(ctx.args)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def are_confirmations_enabled(self) -> bool:
        """Check if confirmations are globally enabled."""
        return self._config.settings.confirmations_enabled

    def get_max_session_cost(self) -> float:
        """Get maximum session cost setting."""
        return self._config.settings.max_session_cost

    # -------------------------------------------------------------------------
    # Rule administration
    # -------------------------------------------------------------------------

    def get_rules(self) -> list[Rule]:
        """Get a copy of the rule list."""
        return list(self._config.rules)

    def add_rule(self, rule: Rule | Mapping[str, Any]) -> Rule:
        """Validate and append a rule.

        Raises:
            PolicyConfigError: If the rule is invalid.
        """
        compiled = build_rule(rule)
        self._config.rules.append(compiled)
        logger.info("Added policy rule %s", compiled.name)
        return compiled

    def remove_rule(self, name: str) -> bool:
        """Remove the first rule with this name.

        Returns:
            True if a rule was removed.
        """
        for index, rule in enumerate(self._config.rules):
            if rule.name == name:
                del self._config.rules[index]
                logger.info("Removed policy rule %s", name)
                return True
        return False

    def set_rule_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a rule by name.

        Returns:
            True if the rule exists.
        """
        for rule in self._config.rules:
            if rule.name == name:
                rule.enabled = enabled
                return True
        return False

"""Loading and validation of policy rule documents.

Policy documents are YAML:

    version: "1.0.0"
    settings:
      maxSessionCost: 1.00
      confirmationsEnabled: true
    rules:
      - name: confirm_delete
        condition: "tool.name.match(/delete|remove/i)"
        action: require_confirmation
        message: "This will permanently delete data. Are you sure?"
        priority: 10

Every rule's condition (and transform) is compiled here, so a document
that loads is guaranteed to contain only well-formed, whitelisted
expressions.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from designagent.policy.expressions import Expression, compile_expression
from designagent.policy.types import (
    DEFAULT_MAX_SESSION_COST,
    DEFAULT_PRIORITY,
    ExpressionSyntaxError,
    PolicyConfig,
    PolicyConfigError,
    PolicySettings,
    Rule,
    RuleAction,
)

logger = logging.getLogger(__name__)

DEFAULT_RULES = """
version: "1.0.0"

settings:
  maxSessionCost: 1.00
  confirmationsEnabled: true

rules:
  - name: confirm_delete
    condition: "tool.name.match(/delete|remove/i)"
    action: require_confirmation
    message: "This will permanently delete data. Are you sure?"
    priority: 10

  - name: cost_guard
    condition: "context.sessionCost >= context.maxSessionCost"
    action: block
    message: "Session cost limit reached. Please start a new session."
    priority: 1
""".strip()

# Author-time disallow-list. The compiler rejects all of these anyway;
# the list gives rule authors a clearer error message.
DISALLOWED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"require\s*\("),
    re.compile(r"import\s*\("),
    re.compile(r"eval\s*\("),
    re.compile(r"Function\s*\("),
    re.compile(r"process\."),
    re.compile(r"global\."),
    re.compile(r"\bthis\b"),
    re.compile(r"__proto__"),
    re.compile(r"constructor\s*\["),
)

REQUIRED_RULE_FIELDS = ("name", "condition", "action", "message")


def validate_condition(condition: str) -> tuple[bool, str | None]:
    """Check a condition or transform expression before it is used.

    Args:
        condition: Expression text.

    Returns:
        (valid, error) where error is None for a valid expression.
    """
    for pattern in DISALLOWED_PATTERNS:
        if pattern.search(condition):
            return False, f"Condition contains disallowed pattern: {pattern.pattern}"

    try:
        compile_expression(condition)
    except ExpressionSyntaxError as e:
        return False, f"Invalid condition syntax: {e}"
    return True, None


def build_rule(data: Mapping[str, Any] | Rule) -> Rule:
    """Validate one rule and compile its expressions.

    Args:
        data: Rule mapping (YAML shape) or an existing Rule.

    Returns:
        A Rule with compiled condition/transform.

    Raises:
        PolicyConfigError: If a required field is missing or empty, the
            action is unknown, or an expression does not compile.
    """
    if isinstance(data, Rule):
        data = data.to_dict()
    if not isinstance(data, Mapping):
        raise PolicyConfigError(f"Rule must be a mapping, got {type(data).__name__}")

    label = data.get("name") or "<unnamed>"
    for key in REQUIRED_RULE_FIELDS:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise PolicyConfigError(f"Rule {label!r}: missing or empty {key!r}")

    try:
        action = RuleAction(data["action"])
    except ValueError:
        valid = ", ".join(a.value for a in RuleAction)
        raise PolicyConfigError(
            f"Rule {label!r}: unknown action {data['action']!r} (expected one of {valid})"
        ) from None

    priority = data.get("priority")
    if priority is None:
        priority = DEFAULT_PRIORITY
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise PolicyConfigError(f"Rule {label!r}: priority must be an integer")

    enabled = data.get("enabled")
    if enabled is None:
        enabled = True
    if not isinstance(enabled, bool):
        raise PolicyConfigError(f"Rule {label!r}: enabled must be a boolean")

    transform = data.get("transform")
    if transform is not None and (not isinstance(transform, str) or not transform):
        raise PolicyConfigError(f"Rule {label!r}: transform must be a non-empty string")

    rule = Rule(
        name=data["name"],
        condition=data["condition"],
        action=action,
        message=data["message"],
        priority=priority,
        enabled=enabled,
        transform=transform,
    )
    rule.compiled_condition = _compile(rule.name, "condition", rule.condition)
    if transform is not None:
        rule.compiled_transform = _compile(rule.name, "transform", transform)
    logger.debug("Compiled rule %s (%s, priority %d)", rule.name, action.value, priority)
    return rule


def _compile(rule_name: str, what: str, text: str) -> Expression:
    valid, error = validate_condition(text)
    if not valid:
        raise PolicyConfigError(f"Rule {rule_name!r}: {what}: {error}")
    return compile_expression(text)


def parse_settings(data: Any) -> PolicySettings:
    """Parse the optional settings block."""
    if data is None:
        return PolicySettings()
    if not isinstance(data, Mapping):
        raise PolicyConfigError("settings must be a mapping")

    confirmations = data.get("confirmationsEnabled", True)
    if not isinstance(confirmations, bool):
        raise PolicyConfigError("settings.confirmationsEnabled must be a boolean")

    max_cost = data.get("maxSessionCost", DEFAULT_MAX_SESSION_COST)
    if isinstance(max_cost, bool) or not isinstance(max_cost, (int, float)):
        raise PolicyConfigError("settings.maxSessionCost must be a number")

    return PolicySettings(
        confirmations_enabled=confirmations,
        max_session_cost=float(max_cost),
    )


def config_from_dict(data: Any) -> PolicyConfig:
    """Build a PolicyConfig from a parsed document.

    Raises:
        PolicyConfigError: If the document is not a valid rule set.
    """
    if not isinstance(data, Mapping):
        raise PolicyConfigError("Invalid constraint rules format: expected a mapping")

    version = data.get("version")
    if isinstance(version, bool) or not isinstance(version, (str, int, float)):
        raise PolicyConfigError("Invalid constraint rules format: missing version")

    rules = data.get("rules")
    if not isinstance(rules, list):
        raise PolicyConfigError("Invalid constraint rules format: rules must be a list")

    return PolicyConfig(
        version=str(version),
        rules=[build_rule(r) for r in rules],
        settings=parse_settings(data.get("settings")),
    )


def parse_rules(text: str) -> PolicyConfig:
    """Parse and validate a YAML policy document.

    Raises:
        PolicyConfigError: On YAML syntax errors or invalid rules.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"Invalid YAML: {e}") from e
    return config_from_dict(data)


def load_rules_file(path: Path) -> PolicyConfig:
    """Read and parse a policy document from disk."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PolicyConfigError(f"Cannot read policy file {path}: {e}") from e
    return parse_rules(text)


def config_to_dict(config: PolicyConfig) -> dict[str, Any]:
    """Serialize a PolicyConfig back to the document shape."""
    return {
        "version": config.version,
        "settings": {
            "confirmationsEnabled": config.settings.confirmations_enabled,
            "maxSessionCost": config.settings.max_session_cost,
        },
        "rules": [rule.to_dict() for rule in config.rules],
    }


def get_default_rules_content() -> str:
    """Embedded default policy document."""
    return DEFAULT_RULES

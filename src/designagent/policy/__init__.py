"""Policy engine gating agent tool invocations.

Architecture:
    YAML document → rules loader (validate + compile) → PolicyEngine.evaluate
                                                             │
                                              PolicyDecision (block / confirm /
                                              transform / warn / allow)

Components:
- **expressions**: Whitelisted expression language for conditions/transforms
- **rules**: YAML loading, validation, embedded default rules
- **PolicyEngine**: Rule evaluation with fixed action precedence
- **PolicyFileWatcher**: Hot reload of a policy file (watchdog)
"""

from designagent.policy.engine import PolicyEngine
from designagent.policy.expressions import Expression, compile_expression
from designagent.policy.rules import (
    DEFAULT_RULES,
    build_rule,
    config_from_dict,
    config_to_dict,
    get_default_rules_content,
    load_rules_file,
    parse_rules,
    validate_condition,
)
from designagent.policy.types import (
    EvaluationContext,
    ExpressionEvaluationError,
    ExpressionSyntaxError,
    PolicyConfig,
    PolicyConfigError,
    PolicyDecision,
    PolicyError,
    PolicySettings,
    PolicyStats,
    Rule,
    RuleAction,
    ToolDescriptor,
)
from designagent.policy.watcher import PolicyFileWatcher

__all__ = [
    # Engine
    "PolicyEngine",
    "PolicyFileWatcher",
    # Expressions
    "Expression",
    "compile_expression",
    # Loading
    "DEFAULT_RULES",
    "build_rule",
    "config_from_dict",
    "config_to_dict",
    "get_default_rules_content",
    "load_rules_file",
    "parse_rules",
    "validate_condition",
    # Types
    "EvaluationContext",
    "PolicyConfig",
    "PolicyDecision",
    "PolicySettings",
    "PolicyStats",
    "Rule",
    "RuleAction",
    "ToolDescriptor",
    # Errors
    "ExpressionEvaluationError",
    "ExpressionSyntaxError",
    "PolicyConfigError",
    "PolicyError",
]

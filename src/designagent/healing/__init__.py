"""Self-healing layer - classify failures and recover automatically.

Components:
- **classifier**: Maps exceptions to ErrorCategory / RecoveryStrategy
- **RecoveryHandler**: Retries with exponential backoff or context refresh
"""

from designagent.healing.classifier import (
    classify_error,
    create_http_error,
    get_recovery_strategy,
    is_auto_healable,
)
from designagent.healing.handler import RecoveryHandler, should_retry, with_healing
from designagent.healing.types import (
    ClassifiedError,
    ErrorCategory,
    HealingAttempt,
    HealingConfig,
    HealingResult,
    RecoveryStrategy,
)

__all__ = [
    # Handler
    "RecoveryHandler",
    "should_retry",
    "with_healing",
    # Classifier
    "classify_error",
    "create_http_error",
    "get_recovery_strategy",
    "is_auto_healable",
    # Types
    "ClassifiedError",
    "ErrorCategory",
    "HealingAttempt",
    "HealingConfig",
    "HealingResult",
    "RecoveryStrategy",
]

from __future__ import annotations

from typing import Any, Callable, Mapping

from loadgen.core.context import current
from loadgen.logger import session_logger as logger


def check(value: Any, predicates: Mapping[str, Callable[[Any], Any]]) -> bool:
    """Run named assertions against ``value`` and record each in the ``checks`` rate.

    Each result is also recorded as ``checks{check:<name>}``.  A predicate
    that raises counts as a failed check.  Returns True only if all passed.
    """
    metrics = current().metrics
    all_passed = True
    for name, predicate in predicates.items():
        try:
            passed = bool(predicate(value))
        except Exception as exc:
            logger.debug(
                "check.predicate_error",
                event="check.predicate_error",
                check=name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            passed = False
        metrics.add_rate("checks", passed, tags={"check": name})
        all_passed = all_passed and passed
    return all_passed

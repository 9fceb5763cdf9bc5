"""Per-kind condition predicates over observed cluster objects.

Objects are the camelCase dicts delivered by the API server. Every predicate
here is pure and returns False instead of raising, so a malformed object can
never break a watch loop.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from jsonpath_ng import parse as jp_parse
from jsonpath_ng.exceptions import JsonPathParserError

logger = logging.getLogger("flowkube.kube.conditions")

READY = "Ready"
AVAILABLE = "Available"
COMPLETE = "Complete"
FAILED = "Failed"
SUCCEEDED = "Succeeded"

WAIT_CONDITIONS = (AVAILABLE, COMPLETE, FAILED, READY, SUCCEEDED)

POD_TERMINAL_PHASES = (SUCCEEDED, FAILED)


@lru_cache(maxsize=64)
def _expr(path: str):
    return jp_parse(path)


def _value(obj: Dict[str, Any], path: str) -> Optional[Any]:
    try:
        matches = _expr(path).find(obj)
    except (JsonPathParserError, TypeError, AttributeError):
        return None
    return matches[0].value if matches else None


def _count(obj: Dict[str, Any], path: str) -> int:
    value = _value(obj, path)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _conditions(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    conditions = _value(obj, "status.conditions")
    if not isinstance(conditions, list):
        return []
    return [c for c in conditions if isinstance(c, dict)]


def condition_status(obj: Dict[str, Any], condition_type: str) -> bool:
    """True when ``status.conditions[type=condition_type].status == "True"``."""
    for c in _conditions(obj):
        if c.get("type") == condition_type:
            return c.get("status") == "True"
    return False


def _statefulset(obj: Dict[str, Any], condition: str) -> Optional[bool]:
    # StatefulSets carry no native conditions; derive them from replica counters
    replicas = _count(obj, "spec.replicas")
    ready = _count(obj, "status.readyReplicas")
    current = _count(obj, "status.currentReplicas")
    updated = _count(obj, "status.updatedReplicas")

    if condition in (READY, AVAILABLE):
        return replicas > 0 and ready == replicas
    if condition == COMPLETE:
        return replicas > 0 and current == replicas and updated == replicas
    if condition == SUCCEEDED:
        return replicas > 0 and ready == replicas and updated == replicas
    return None


def _evaluate(kind: str, obj: Dict[str, Any], condition: str) -> bool:
    if kind == "pod":
        if condition == READY:
            return condition_status(obj, READY)
        if condition in (SUCCEEDED, FAILED):
            return _value(obj, "status.phase") == condition

    if kind == "deployment" and condition == AVAILABLE:
        return condition_status(obj, AVAILABLE)

    if kind == "job" and condition in (COMPLETE, FAILED):
        return condition_status(obj, condition)

    if kind == "statefulset":
        met = _statefulset(obj, condition)
        if met is not None:
            return met

    return condition_status(obj, condition)


def evaluate(kind: str, obj: Any, condition: str) -> bool:
    if not isinstance(obj, dict) or not kind or not condition:
        return False
    try:
        return bool(_evaluate(kind.lower(), obj, condition))
    except Exception:
        logger.debug("Condition %s on %s could not be evaluated", condition, kind, exc_info=True)
        return False


def pod_terminated(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    return _value(obj, "status.phase") in POD_TERMINAL_PHASES


def job_finished(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    return _count(obj, "status.succeeded") > 0 or _count(obj, "status.failed") > 0

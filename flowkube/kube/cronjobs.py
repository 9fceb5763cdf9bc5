import copy
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flowkube import config
from flowkube.errors import ValidationError
from flowkube.util.aio import run_blocking
from .client import ClusterSession
from .jobs import RunResult, run_job_manifest, validate_name
from .resources import ResourceKey, add_managed_labels, call

logger = logging.getLogger("flowkube.kube.cronjobs")

CREATED_FROM_ANNOTATION = "cronjob.kubernetes.io/created-from"
TRIGGERED_AT_ANNOTATION = f"{config.ANNOTATION_PREFIX}/triggered-at"
OVERRIDES_ANNOTATION = f"{config.ANNOTATION_PREFIX}/overrides-applied"


@dataclass
class JobOverrideSet:
    command: Optional[List[str]] = None
    args: Optional[List[str]] = None
    envs: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_params(cls, data: Optional[Dict[str, Any]]) -> "JobOverrideSet":
        """Build from ``{overrideCommand, overrideArgs, overrideEnvs: {env: [...]}}``."""
        data = data or {}
        return cls(
            command=_string_list(data.get("overrideCommand"), "overrideCommand"),
            args=_string_list(data.get("overrideArgs"), "overrideArgs"),
            envs=_env_pairs(data.get("overrideEnvs")),
        )

    @property
    def empty(self) -> bool:
        return not self.command and not self.args and not self.envs


def _json_text(value: Any, what: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as e:
            raise ValidationError(f"{what} must be valid JSON: {e}") from e
    return value


def _env_pairs(value: Any) -> List[Tuple[str, str]]:
    if value is None or value == "":
        return []
    value = _json_text(value, "overrideEnvs")
    if not isinstance(value, dict):
        raise ValidationError('overrideEnvs must be an object like {"env": [{"name": ..., "value": ...}]}')
    entries = value.get("env") or []
    if not isinstance(entries, list):
        raise ValidationError("overrideEnvs.env must be an array")

    envs = []
    for e in entries:
        if not isinstance(e, dict):
            raise ValidationError(f"overrideEnvs.env entries must be objects with name and value, got {e!r}")
        name = e.get("name")
        env_value = e.get("value")
        # entries without a name or value are ignored
        if name and env_value is not None:
            envs.append((name, str(env_value)))
    return envs


def _string_list(value: Any, what: str) -> Optional[List[str]]:
    if value is None or value == "":
        return None
    value = _json_text(value, what)
    if not isinstance(value, list):
        raise ValidationError(f"{what} must be an array of strings")
    return [str(v) for v in value]


def merge_envs(existing: Optional[List[Dict[str, Any]]], overrides: List[Tuple[str, str]]) -> List[Dict[str, Any]]:
    """Replace env entries by name, appending unknown ones in order."""
    merged = [dict(e) for e in (existing or [])]
    index = {e.get("name"): i for i, e in enumerate(merged)}
    for name, value in overrides:
        entry = {"name": name, "value": value}
        if name in index:
            merged[index[name]] = entry
        else:
            index[name] = len(merged)
            merged.append(entry)
    return merged


def apply_overrides(pod_spec: Dict[str, Any], overrides: JobOverrideSet) -> Dict[str, Any]:
    for container in pod_spec.get("containers") or []:
        if overrides.command:
            container["command"] = list(overrides.command)
        if overrides.args:
            container["args"] = list(overrides.args)
        if overrides.envs:
            container["env"] = merge_envs(container.get("env"), overrides.envs)
    return pod_spec


def build_job_from_cronjob(
    cronjob: Dict[str, Any],
    job_name: str,
    overrides: Optional[JobOverrideSet] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    cron_name = cronjob["metadata"]["name"]
    template = (cronjob.get("spec") or {}).get("jobTemplate") or {}
    if not template.get("spec"):
        raise ValidationError(f'CronJob "{cron_name}" has no job template spec')

    template = copy.deepcopy(template)
    job_spec = template["spec"]
    pod_template = job_spec.setdefault("template", {})
    applied = overrides is not None and not overrides.empty
    if applied:
        apply_overrides(pod_template.setdefault("spec", {}), overrides)

    labels = dict((template.get("metadata") or {}).get("labels") or {})
    labels.update({"cronjob": cron_name, "manual-trigger": "true"})
    annotations = dict((template.get("metadata") or {}).get("annotations") or {})
    annotations[CREATED_FROM_ANNOTATION] = cron_name
    annotations[TRIGGERED_AT_ANNOTATION] = (now or datetime.now(timezone.utc)).isoformat()
    if applied:
        annotations[OVERRIDES_ANNOTATION] = "true"

    return add_managed_labels({
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": job_name, "labels": labels, "annotations": annotations},
        "spec": job_spec,
    })


async def trigger_cronjob(
    session: ClusterSession,
    name: str,
    namespace: str = config.DEFAULT_NAMESPACE,
    cleanup: bool = True,
    overrides: Optional[JobOverrideSet] = None,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    log=None,
) -> RunResult:
    """Create a Job from a CronJob's template and run it to completion."""
    log = log or logger
    validate_name(name, "CronJob name")
    job_name = validate_name(f"{name}-{int(time.time())}", "Job name")

    key = ResourceKey("batch/v1", "CronJob", namespace, name)
    cronjob = session.to_plain(await run_blocking(call, session, key, "read"))

    now = datetime.now(timezone.utc)
    manifest = build_job_from_cronjob(cronjob, job_name, overrides, now)
    applied = OVERRIDES_ANNOTATION in manifest["metadata"]["annotations"]
    log.info(
        "Triggering CronJob %s/%s as job %s (overrides applied: %s)",
        namespace, name, job_name, applied,
    )

    result = await run_job_manifest(
        session, manifest, namespace, cleanup=cleanup, timeout=timeout, log=log
    )
    result.cron_job_name = name
    result.created_at = now.isoformat()
    result.overrides_applied = applied
    return result

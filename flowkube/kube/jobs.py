"""Run a Job to completion and report its outcome.

Both plain Jobs and Jobs triggered from a CronJob go through
:func:`run_job_manifest`: create the Job, watch it until it has a succeeded or
failed Pod, read the logs of its first Pod and optionally delete it.
"""

import logging
import random
import re
import string
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flowkube import config
from flowkube.errors import ClusterCallError, FlowKubeError, ValidationError
from flowkube.util.aio import run_blocking
from .client import ClusterSession
from .conditions import job_finished
from .exec import CONTAINER_NAME
from .logs import collect_log_text, first_container, format_output
from .resources import ResourceKey, add_managed_labels, call, list_pods
from .wait import Aborted, watch_until

logger = logging.getLogger("flowkube.kube.jobs")

MAX_NAME_LENGTH = 63
NAME_SUFFIX_LENGTH = 6
DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

SUCCEEDED = "succeeded"
FAILED = "failed"
UNKNOWN = "unknown"

JOB_NAME_SELECTORS = ("job-name", "batch.kubernetes.io/job-name")


@dataclass
class RunResult:
    name: str
    namespace: str
    status: str
    raw_output: str
    output: Any
    cleaned: bool
    cron_job_name: Optional[str] = None
    created_at: Optional[str] = None
    overrides_applied: bool = False
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, Any]:
        data = {
            "jobName": self.name,
            "namespace": self.namespace,
            "status": self.status,
            "rawOutput": self.raw_output,
            "output": self.output,
            "cleaned": self.cleaned,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }
        if self.cron_job_name is not None:
            data["cronJobName"] = self.cron_job_name
            data["createdAt"] = self.created_at
            data["overridesApplied"] = self.overrides_applied
        return data


def validate_name(name: str, what: str = "Job name") -> str:
    if not name:
        raise ValidationError(f"{what} is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f'{what} "{name}" is too long ({len(name)} > {MAX_NAME_LENGTH} characters)'
        )
    if not DNS1123_LABEL.match(name):
        raise ValidationError(
            f'{what} "{name}" must consist of lower case alphanumeric characters or "-", '
            "and must start and end with an alphanumeric character"
        )
    return name


def generate_job_name(base: str) -> str:
    validate_name(base)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=NAME_SUFFIX_LENGTH))
    return validate_name(f"{base}-{suffix}")


def build_job(
    name: str,
    image: str,
    command: List[str],
    restart_policy: str = "Never",
) -> Dict[str, Any]:
    job = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name},
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {"name": CONTAINER_NAME, "image": image, "args": list(command)}
                    ],
                    "restartPolicy": restart_policy,
                }
            },
        },
    }
    return add_managed_labels(job)


def find_job_pods(session: ClusterSession, job_name: str, namespace: str, log=None) -> list:
    log = log or logger
    for label in JOB_NAME_SELECTORS:
        selector = f"{label}={job_name}"
        try:
            pods = list_pods(session, namespace, selector)
        except ClusterCallError as e:
            log.warning("Listing pods with %s failed: %s", selector, e)
            continue
        if pods:
            return pods
    return []


async def _job_output(
    session: ClusterSession,
    job_name: str,
    namespace: str,
    succeeded: int,
    failed: int,
    container: Optional[str],
    log,
) -> str:
    pods = await run_blocking(find_job_pods, session, job_name, namespace, log)
    if not pods:
        return f"No pods found for job {job_name}"

    pod = pods[0]
    target = container or first_container(pod)
    try:
        return await collect_log_text(
            session, namespace, pod.metadata.name, target,
            tail_lines=config.DEFAULT_TAIL_LINES, log=log,
        )
    except FlowKubeError as e:
        log.warning("Failed to read logs of job %s: %s", job_name, e)
        if succeeded > 0:
            return f"Job completed successfully. {succeeded} pod(s) succeeded."
        return f"Job failed. {failed} pod(s) failed."


async def delete_job(session: ClusterSession, name: str, namespace: str, log=None) -> bool:
    log = log or logger
    key = ResourceKey("batch/v1", "Job", namespace, name)
    try:
        await run_blocking(call, session, key, "delete", propagation_policy="Background")
    except ClusterCallError as e:
        log.warning("Failed to clean up job %s/%s: %s", namespace, name, e)
        return False
    log.info("Deleted job %s/%s", namespace, name)
    return True


async def run_job_manifest(
    session: ClusterSession,
    manifest: Dict[str, Any],
    namespace: str,
    cleanup: bool = True,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    container: Optional[str] = None,
    log=None,
) -> RunResult:
    log = log or logger
    name = manifest["metadata"]["name"]
    key = ResourceKey("batch/v1", "Job", namespace, name)

    log.info("Creating job %s/%s", namespace, name)
    await run_blocking(call, session, key, "create", body=manifest)

    try:
        outcome = await watch_until(
            session, key, job_finished, "Finished", timeout=timeout, log=log
        )
    except FlowKubeError:
        if cleanup:
            await delete_job(session, name, namespace, log)
        raise

    if isinstance(outcome, Aborted):
        log.warning("Watch for job %s/%s was aborted; job left in place", namespace, name)
        return RunResult(
            name=name,
            namespace=namespace,
            status=UNKNOWN,
            raw_output="Job watch was aborted",
            output="Job watch was aborted",
            cleaned=False,
        )

    status = outcome.resource.get("status") or {}
    succeeded = int(status.get("succeeded") or 0)
    failed = int(status.get("failed") or 0)
    log.info("Job %s finished: succeeded=%d failed=%d", name, succeeded, failed)

    raw = await _job_output(session, name, namespace, succeeded, failed, container, log)
    cleaned = await delete_job(session, name, namespace, log) if cleanup else False

    return RunResult(
        name=name,
        namespace=namespace,
        status=SUCCEEDED if succeeded > 0 else FAILED,
        raw_output=raw,
        output=format_output(raw),
        cleaned=cleaned,
        succeeded=succeeded,
        failed=failed,
    )


async def run_job(
    session: ClusterSession,
    job_name: str,
    image: str,
    command: List[str],
    namespace: str = config.DEFAULT_NAMESPACE,
    restart_policy: str = "Never",
    cleanup: bool = True,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    log=None,
) -> RunResult:
    if not image:
        raise ValidationError("Job image is required")
    if not isinstance(command, list) or not all(isinstance(c, str) for c in command):
        raise ValidationError("Job command must be a list of strings")
    if restart_policy not in ("Never", "OnFailure"):
        raise ValidationError(f"Unsupported restart policy: {restart_policy}")
    name = generate_job_name(job_name)
    manifest = build_job(name, image, command, restart_policy)
    return await run_job_manifest(
        session, manifest, namespace, cleanup=cleanup, timeout=timeout, log=log
    )

import logging
import time
from typing import Any, Dict, List, Optional

from kubernetes import client

from flowkube import config
from flowkube.errors import ClusterCallError, ValidationError
from flowkube.util.aio import run_blocking
from .client import ClusterSession
from .conditions import pod_terminated
from .logs import collect_log_text
from .resources import ResourceKey, call
from .wait import Aborted, watch_until

logger = logging.getLogger("flowkube.kube")

CONTAINER_NAME = "main-container"


def default_pod_name() -> str:
    return f"flowkube-pod-{int(time.time() * 1000)}"


def build_pod(name: str, image: str, command: List[str]) -> client.V1Pod:
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=name,
            labels={config.MANAGED_BY_LABEL: config.MANAGED_BY_VALUE},
        ),
        spec=client.V1PodSpec(
            restart_policy="Never",
            containers=[
                client.V1Container(
                    name=CONTAINER_NAME,
                    image=image,
                    args=list(command),
                )
            ],
        ),
    )


async def run_pod_and_get_logs(
    session: ClusterSession,
    image: str,
    command: List[str],
    namespace: str = config.DEFAULT_NAMESPACE,
    pod_name: Optional[str] = None,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    log=None,
) -> str:
    """Run ``command`` in a throwaway Pod and return its log output.

    The Pod is deleted once it has been created, whatever the outcome of the
    wait; delete failures are only logged.
    """
    log = log or logger
    if not image:
        raise ValidationError("Image is required")
    if not isinstance(command, list) or not all(isinstance(c, str) for c in command):
        raise ValidationError("Command must be a list of strings")

    name = pod_name or default_pod_name()
    key = ResourceKey("v1", "Pod", namespace, name)

    log.info("Creating pod %s/%s with image %s", namespace, name, image)
    await run_blocking(call, session, key, "create", body=build_pod(name, image, command))

    async def fetch_logs(obj: Dict[str, Any]) -> str:
        log.info("Pod %s finished with phase %s", name, (obj.get("status") or {}).get("phase"))
        return await collect_log_text(
            session, namespace, name, CONTAINER_NAME,
            tail_lines=config.DEFAULT_TAIL_LINES, log=log,
        )

    try:
        outcome = await watch_until(
            session, key, pod_terminated, "Terminated",
            timeout=timeout, on_match=fetch_logs, log=log,
        )
        if isinstance(outcome, Aborted):
            return ""
        return outcome.value or ""
    finally:
        await _delete_pod(session, key, log)


async def _delete_pod(session: ClusterSession, key: ResourceKey, log) -> bool:
    try:
        await run_blocking(call, session, key, "delete")
    except ClusterCallError as e:
        log.warning("Failed to delete pod %s/%s: %s", key.namespace, key.name, e)
        return False
    log.debug("Deleted pod %s/%s", key.namespace, key.name)
    return True

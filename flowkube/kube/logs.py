import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes.client import ApiException

from flowkube import config
from flowkube.errors import ClusterCallError, ValidationError
from flowkube.util.aio import run_blocking
from flowkube.util.oneshot import OneShot
from .client import ClusterSession
from .resources import ResourceKey, call, list_pods

logger = logging.getLogger("flowkube.kube.logs")

LOG_CHUNK_SIZE = 4096


def format_output(output: Any) -> Any:
    """Return parsed JSON when ``output`` is a JSON document, else ``output``."""
    if not isinstance(output, str) or not output.strip():
        return output
    try:
        return json.loads(output)
    except ValueError:
        return output


def parse_since_time(since_time: str) -> datetime:
    """Parse an RFC3339 timestamp such as ``2024-01-01T00:00:00Z``."""
    value = since_time.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid time format: {since_time}. Please use RFC3339 format "
            "(e.g., 2024-01-01T00:00:00Z)"
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def since_seconds(since_time: str, now: Optional[datetime] = None) -> int:
    # the python client only accepts a relative sinceSeconds
    now = now or datetime.now(timezone.utc)
    delta = (now - parse_since_time(since_time)).total_seconds()
    return max(1, math.ceil(delta))


class _LogStream:
    """Reads a pod log response from an executor thread."""

    def __init__(self, resp):
        self._resp = resp
        self.closed = False

    def pump(self, on_chunk, on_end, on_error) -> None:
        try:
            for chunk in self._resp.stream(LOG_CHUNK_SIZE, decode_content=True):
                if self.closed:
                    break
                on_chunk(chunk)
        except Exception as e:
            if not self.closed:
                on_error(e)
                return
        on_end()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._resp.close()
            self._resp.release_conn()
        except Exception:
            logger.debug("Closing log response failed", exc_info=True)


async def collect_log_text(
    session: ClusterSession,
    namespace: str,
    pod_name: str,
    container: Optional[str] = None,
    tail_lines: Optional[int] = config.DEFAULT_TAIL_LINES,
    since_time: Optional[str] = None,
    follow: bool = False,
    log=None,
) -> str:
    """Accumulate a pod's log stream into text.

    The stream ends either naturally or when the watchdog fires (shorter for
    non-follow mode); both are normal terminations that return whatever was
    read so far.
    """
    log = log or logger
    kwargs: Dict[str, Any] = {
        "name": pod_name,
        "namespace": namespace,
        "pretty": False,
        "timestamps": False,
        "tail_lines": config.DEFAULT_TAIL_LINES if tail_lines is None else tail_lines,
        "_preload_content": False,
    }
    if container:
        kwargs["container"] = container
    if follow:
        kwargs["follow"] = True
    if since_time:
        kwargs["since_seconds"] = since_seconds(since_time)

    log.debug("Starting log retrieval for pod %s, container: %s", pod_name, container)
    try:
        resp = await run_blocking(session.core.read_namespaced_pod_log, **kwargs)
    except ApiException as e:
        raise ClusterCallError("get logs for", "pod", pod_name, namespace, e) from e

    loop = asyncio.get_running_loop()
    result: OneShot = OneShot(loop)
    chunks: List[str] = []
    stream = _LogStream(resp)

    def on_chunk(chunk) -> None:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        chunks.append(chunk)

    def on_end() -> None:
        if result.resolve("".join(chunks)):
            log.debug("Log stream ended for pod %s, %d chars", pod_name, sum(map(len, chunks)))

    def on_error(err: BaseException) -> None:
        log.error("Log stream error for pod %s: %s", pod_name, err)
        result.reject(ClusterCallError("get logs for", "pod", pod_name, namespace, err))

    def on_watchdog() -> None:
        if result.resolve("".join(chunks)):
            log.debug("Log timeout reached for pod %s, ending stream", pod_name)
            stream.close()

    def threadsafe(fn):
        def dispatch(*args):
            try:
                loop.call_soon_threadsafe(fn, *args)
            except RuntimeError:
                stream.close()
        return dispatch

    timeout = config.LOG_FOLLOW_TIMEOUT if follow else config.LOG_TIMEOUT
    watchdog = loop.call_later(timeout, on_watchdog)
    pump = loop.run_in_executor(
        None, stream.pump, threadsafe(on_chunk), threadsafe(on_end), threadsafe(on_error)
    )
    try:
        return await result.wait()
    finally:
        watchdog.cancel()
        stream.close()
        await asyncio.wait({pump}, timeout=1.0)


async def collect_logs(
    session: ClusterSession,
    namespace: str,
    pod_name: str,
    container: Optional[str] = None,
    tail_lines: Optional[int] = config.DEFAULT_TAIL_LINES,
    since_time: Optional[str] = None,
    follow: bool = False,
    log=None,
) -> Any:
    text = await collect_log_text(
        session, namespace, pod_name, container,
        tail_lines=tail_lines, since_time=since_time, follow=follow, log=log,
    )
    return format_output(text)


def first_container(pod) -> Optional[str]:
    spec = getattr(pod, "spec", None)
    containers = getattr(spec, "containers", None) or []
    return containers[0].name if containers else None


async def get_logs(
    session: ClusterSession,
    pod_name: str,
    namespace: str,
    container: Optional[str] = None,
    follow: bool = False,
    tail_lines: Optional[int] = None,
    since_time: Optional[str] = None,
    log=None,
) -> Any:
    if not pod_name:
        raise ValidationError("Pod name is required")
    if since_time:
        parse_since_time(since_time)

    if not container:
        pod = await run_blocking(call, session, ResourceKey("v1", "Pod", namespace, pod_name), "read")
        container = first_container(pod)
        if not container:
            raise ValidationError(f'Pod "{pod_name}" has no containers')
        (log or logger).debug("Using first container: %s", container)

    return await collect_logs(
        session, namespace, pod_name, container,
        tail_lines=tail_lines, since_time=since_time, follow=follow, log=log,
    )


async def get_logs_by_label_selector(
    session: ClusterSession,
    label_selector: str,
    namespace: str,
    container: Optional[str] = None,
    follow: bool = False,
    tail_lines: Optional[int] = None,
    since_time: Optional[str] = None,
    log=None,
) -> Dict[str, Any]:
    log = log or logger
    if not label_selector:
        raise ValidationError("Label selector is required")
    if since_time:
        parse_since_time(since_time)

    pods = await run_blocking(list_pods, session, namespace, label_selector)
    log.debug("Found %d pods matching %s", len(pods), label_selector)
    if not pods:
        return {
            "podsFound": 0,
            "pods": [],
            "totalLogs": "No pods found matching the label selector",
            "labelSelector": label_selector,
            "namespace": namespace,
        }

    entries = []
    combined = []
    for pod in pods:
        name = pod.metadata.name if pod.metadata else None
        if not name:
            log.warning("Pod found without name, skipping")
            continue
        phase = (pod.status.phase if pod.status else None) or "Unknown"
        target = container or first_container(pod)
        if not target:
            log.warning("Pod %s has no containers, skipping", name)
            continue
        try:
            logs = await collect_logs(
                session, namespace, name, target,
                tail_lines=tail_lines, since_time=since_time, follow=follow, log=log,
            )
        except ClusterCallError as e:
            log.warning("Failed to get logs for pod %s: %s", name, e)
            entries.append({
                "podName": name,
                "container": target,
                "logs": f"Error getting logs: {e}",
                "phase": phase,
                "error": str(e),
            })
            combined.append(f"=== Pod: {name} (Error) ===\nError getting logs: {e}\n=== End of {name} logs ===")
            continue
        entries.append({"podName": name, "container": target, "logs": logs, "phase": phase})
        text = logs if isinstance(logs, str) else json.dumps(logs)
        combined.append(f"=== Pod: {name} ({target}) ===\n{text}\n=== End of {name} logs ===")

    return {
        "podsFound": len(pods),
        "pods": entries,
        "totalLogs": "\n".join(combined).strip(),
        "labelSelector": label_selector,
        "namespace": namespace,
    }

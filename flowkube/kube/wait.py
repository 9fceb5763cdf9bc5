"""Turn a collection watch into a single condition outcome.

A :class:`ResourceWatch` opens a watch on the collection that holds the target
object, filters events by name, evaluates a predicate on every matching event
and settles exactly once: when the predicate holds, when the deadline fires,
when the stream fails, or when the caller aborts. The blocking stream runs in
an executor thread; every callback is marshalled back onto the event loop so
the state machine itself is single-threaded.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from kubernetes import watch
from kubernetes.client import ApiException

from flowkube import config
from flowkube.errors import (
    ExpectedAbortError,
    ValidationError,
    WatchStreamError,
    WatchTimeoutError,
)
from flowkube.util.oneshot import OneShot
from .client import ClusterSession
from .conditions import evaluate
from .resources import ResourceKey, resolve_method

logger = logging.getLogger("flowkube.kube.wait")

# Delay between resolving and closing the stream, so an in-flight event
# handler never races the close.
CLOSE_GRACE = 0.1
PUMP_JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class Met:
    resource: Dict[str, Any]
    value: Any = None


@dataclass(frozen=True)
class TimedOut:
    kind: str
    name: str
    condition: str
    timeout: float


@dataclass(frozen=True)
class StreamError:
    cause: BaseException


@dataclass(frozen=True)
class Aborted:
    pass


ConditionOutcome = Union[Met, TimedOut, StreamError, Aborted]


def is_expected_abort(err: BaseException, completed: bool) -> bool:
    return completed and isinstance(err, ExpectedAbortError)


class _WatchStream:
    """Blocking watch over one collection; driven from an executor thread."""

    def __init__(self, session: ClusterSession, key: ResourceKey):
        self._list_fn, self._kwargs = resolve_method(session, key, "list")
        self._watch = watch.Watch()
        self._resp = None
        self.closed = False

    def _open(self, *args, **kwargs):
        # Keep the response so close() can interrupt a blocked read
        self._resp = self._list_fn(*args, **kwargs)
        return self._resp

    def pump(self, on_event: Callable, on_error: Callable) -> None:
        try:
            for event in self._watch.stream(self._open, **self._kwargs):
                if self.closed:
                    break
                if event.get("type") == "ERROR":
                    raw = event.get("raw_object") or event.get("object") or {}
                    raise ApiException(
                        status=raw.get("code"),
                        reason=f"{raw.get('reason')}: {raw.get('message')}",
                    )
                on_event(event.get("type"), event.get("object"))
        except Exception as e:
            on_error(ExpectedAbortError(e) if self.closed else e)
            return
        if not self.closed:
            on_error(ConnectionError("watch stream ended before the condition was decided"))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._watch.stop()
        resp = self._resp
        if resp is not None:
            try:
                resp.close()
            except Exception:
                logger.debug("Closing watch response failed", exc_info=True)


class ResourceWatch:
    """Wait for one named object in a collection to satisfy ``predicate``.

    ``on_match`` is an optional coroutine run once the predicate holds; its
    return value becomes ``Met.value`` and an exception from it becomes the
    error of :meth:`wait`. Use as an async context manager so the stream is
    released when the block exits.
    """

    def __init__(
        self,
        session: ClusterSession,
        key: ResourceKey,
        predicate: Callable[[Dict[str, Any]], bool],
        condition: str,
        timeout: float = config.DEFAULT_WAIT_TIMEOUT,
        on_match: Optional[Callable[[Dict[str, Any]], Awaitable[Any]]] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ):
        if not key.name:
            raise ValidationError(f"Waiting on {key.kind} requires a resource name")
        if timeout is None or timeout <= 0:
            raise ValidationError(f"Timeout must be a positive number of seconds, got {timeout!r}")
        self._session = session
        self._key = key
        self._predicate = predicate
        self._condition = condition
        self._timeout = float(timeout)
        self._on_match = on_match
        self._log = log or logger

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._result: Optional[OneShot] = None
        self._stream: Optional[_WatchStream] = None
        self._pump: Optional[asyncio.Future] = None
        self._deadline: Optional[asyncio.TimerHandle] = None
        self._close_handle: Optional[asyncio.TimerHandle] = None
        self._match_task: Optional[asyncio.Task] = None
        self._completed = False

    async def __aenter__(self) -> "ResourceWatch":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def done(self) -> bool:
        return self._result is not None and self._result.done

    def start(self) -> None:
        if self._pump is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._result = OneShot(self._loop)
        self._stream = _WatchStream(self._session, self._key)
        self._log.debug(
            "Watching %s for %s/%s condition %s (timeout %ss)",
            self._key.collection_path(), self._key.kind, self._key.name,
            self._condition, self._timeout,
        )
        self._deadline = self._loop.call_later(self._timeout, self._on_deadline)
        self._pump = self._loop.run_in_executor(
            None,
            self._stream.pump,
            self._threadsafe(self._on_event),
            self._threadsafe(self._on_error),
        )

    async def wait(self) -> ConditionOutcome:
        self.start()
        try:
            return await self._result.wait()
        except asyncio.CancelledError:
            self.abort()
            raise

    def abort(self) -> None:
        """Settle as :class:`Aborted` if still pending and close the stream."""
        if self._result is None or self._result.done:
            return
        self._completed = True
        self._cancel_deadline()
        if self._match_task is not None:
            self._match_task.cancel()
        self._log.info("Watch for %s/%s aborted", self._key.kind, self._key.name)
        self._result.resolve(Aborted())
        self._close()

    async def aclose(self) -> None:
        if self._pump is None:
            return
        self.abort()
        if self._close_handle is None:
            self._close()
        done, _ = await asyncio.wait({self._pump}, timeout=PUMP_JOIN_TIMEOUT)
        if not done:
            self._log.warning(
                "Watch stream for %s/%s did not shut down within %ss",
                self._key.kind, self._key.name, PUMP_JOIN_TIMEOUT,
            )

    def _threadsafe(self, fn: Callable) -> Callable:
        loop = self._loop

        def dispatch(*args):
            try:
                loop.call_soon_threadsafe(fn, *args)
            except RuntimeError:
                # event loop is gone; nobody is waiting any more
                self._stream.close()

        return dispatch

    def _on_event(self, event_type: str, obj: Any) -> None:
        if self._completed:
            return
        meta = obj.get("metadata") if isinstance(obj, dict) else None
        if not meta or meta.get("name") != self._key.name:
            return

        self._log.debug(
            "%s/%s update: type=%s status=%s",
            self._key.kind, self._key.name, event_type, obj.get("status"),
        )
        if not self._predicate(obj):
            return

        self._completed = True
        self._cancel_deadline()
        self._log.info(
            "%s/%s condition %s met", self._key.kind, self._key.name, self._condition
        )
        if self._on_match is None:
            self._result.resolve(Met(obj))
            self._schedule_close()
        else:
            self._match_task = self._loop.create_task(self._run_match(obj))

    async def _run_match(self, obj: Dict[str, Any]) -> None:
        try:
            value = await self._on_match(obj)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._result.reject(e)
        else:
            self._result.resolve(Met(obj, value))
        finally:
            self._schedule_close()

    def _on_error(self, err: BaseException) -> None:
        if is_expected_abort(err, self._completed):
            self._log.debug(
                "Watch for %s/%s aborted after completion (expected)",
                self._key.kind, self._key.name,
            )
            return
        if self._completed:
            self._log.debug(
                "Ignoring watch error for %s/%s after completion: %s",
                self._key.kind, self._key.name, err,
            )
            return

        self._completed = True
        self._cancel_deadline()
        self._log.error("Watch error for %s/%s: %s", self._key.kind, self._key.name, err)
        self._result.resolve(StreamError(err))
        self._close()

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._completed:
            return
        self._completed = True
        self._log.warning(
            "Timeout reached for %s/%s after %ss, aborting watch",
            self._key.kind, self._key.name, self._timeout,
        )
        self._result.resolve(
            TimedOut(self._key.kind, self._key.name, self._condition, self._timeout)
        )
        self._close()

    def _cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _schedule_close(self) -> None:
        if self._close_handle is None and not self._stream.closed:
            self._close_handle = self._loop.call_later(CLOSE_GRACE, self._close)

    def _close(self) -> None:
        self._stream.close()


def raise_for_outcome(outcome: ConditionOutcome, key: ResourceKey) -> ConditionOutcome:
    """Re-raise failed outcomes as the matching flowkube error."""
    if isinstance(outcome, TimedOut):
        raise WatchTimeoutError(outcome.kind, outcome.name, outcome.condition, outcome.timeout)
    if isinstance(outcome, StreamError):
        raise WatchStreamError(key.kind, key.name, key.namespace, outcome.cause) from outcome.cause
    return outcome


async def watch_until(
    session: ClusterSession,
    key: ResourceKey,
    predicate: Callable[[Dict[str, Any]], bool],
    condition: str,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    on_match: Optional[Callable[[Dict[str, Any]], Awaitable[Any]]] = None,
    log=None,
) -> ConditionOutcome:
    async with ResourceWatch(
        session, key, predicate, condition, timeout=timeout, on_match=on_match, log=log
    ) as w:
        outcome = await w.wait()
    return raise_for_outcome(outcome, key)


async def wait_for_resource(
    session: ClusterSession,
    api_version: str,
    kind: str,
    name: str,
    namespace: str,
    condition: str,
    timeout: float = config.DEFAULT_WAIT_TIMEOUT,
    log=None,
) -> Dict[str, Any]:
    if not condition:
        raise ValidationError("A wait condition is required")
    key = ResourceKey(api_version, kind, namespace, name)
    outcome = await watch_until(
        session,
        key,
        lambda obj: evaluate(kind, obj, condition),
        condition,
        timeout=timeout,
        log=log,
    )
    if isinstance(outcome, Aborted):
        return {"resource": None, "condition": condition, "status": "aborted"}
    return {"resource": outcome.resource, "condition": condition, "status": "met"}

"""
Shared pytest fixtures for flowkube tests.

This module provides:
- FakeWatch: stands in for kubernetes.watch.Watch and replays scripted events
- FakeLogResponse: stands in for the urllib3 response of a pod log request
- a ClusterSession whose sub-clients are MagicMocks
"""

import threading
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import MagicMock

import pytest

from flowkube.kube.client import ClusterSession

# Upper bound for how long a fake stream blocks when nobody stops it
HOLD_LIMIT = 5.0


class FakeWatch:
    """One watch instance; created by :class:`FakeWatchFactory`."""

    def __init__(self, factory: "FakeWatchFactory"):
        self.factory = factory
        self.stop_calls = 0
        self.kwargs: Optional[Dict[str, Any]] = None
        self._stopped = threading.Event()

    def stream(self, func, **kwargs):
        self.kwargs = kwargs
        func(**kwargs)
        events = self.factory.events
        if callable(events):
            events = events()
        for event in events:
            if self._stopped.is_set():
                return
            yield event
        if self.factory.error is not None:
            raise self.factory.error
        if self.factory.hold:
            self._stopped.wait(HOLD_LIMIT)

    def stop(self):
        self.stop_calls += 1
        self._stopped.set()


class FakeWatchFactory:
    """Replaces ``kubernetes.watch.Watch``.

    ``events`` is a list of watch events (or a callable returning one, read
    when the stream opens). After the events the stream raises ``error`` if
    set, otherwise blocks until stopped when ``hold`` is true, otherwise ends.
    """

    def __init__(self):
        self.events: Union[List[Dict[str, Any]], Callable[[], List[Dict[str, Any]]]] = []
        self.error: Optional[BaseException] = None
        self.hold = True
        self.watches: List[FakeWatch] = []

    def __call__(self):
        w = FakeWatch(self)
        self.watches.append(w)
        return w


class FakeLogResponse:
    def __init__(self, chunks=(), hold=False, error=None):
        self.chunks = list(chunks)
        self.hold = hold
        self.error = error
        self.close_calls = 0
        self._closed = threading.Event()

    def stream(self, amt, decode_content=True):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hold:
            self._closed.wait(HOLD_LIMIT)

    def close(self):
        self.close_calls += 1
        self._closed.set()

    def release_conn(self):
        pass


def event(name: str, status: Optional[Dict[str, Any]] = None, event_type: str = "MODIFIED", spec=None):
    obj = {"metadata": {"name": name}, "status": status or {}}
    if spec is not None:
        obj["spec"] = spec
    return {"type": event_type, "object": obj, "raw_object": obj}


def pod_model(name: str, containers=("main",), phase: str = "Running"):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(containers=[SimpleNamespace(name=c) for c in containers]),
        status=SimpleNamespace(phase=phase),
    )


@pytest.fixture
def session():
    """ClusterSession with mocked sub-clients; sanitize is the identity."""
    api_client = MagicMock()
    api_client.sanitize_for_serialization.side_effect = lambda obj: obj
    return ClusterSession(
        api_client=api_client,
        core=MagicMock(),
        apps=MagicMock(),
        batch=MagicMock(),
        networking=MagicMock(),
        custom=MagicMock(),
    )


@pytest.fixture
def fake_watch(monkeypatch):
    factory = FakeWatchFactory()
    monkeypatch.setattr("flowkube.kube.wait.watch.Watch", factory)
    return factory


@pytest.fixture
def fast_logs(monkeypatch):
    """Shorten the log watchdogs so blocking streams end quickly."""
    monkeypatch.setattr("flowkube.config.LOG_TIMEOUT", 0.2)
    monkeypatch.setattr("flowkube.config.LOG_FOLLOW_TIMEOUT", 0.3)

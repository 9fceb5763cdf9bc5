from typing import Optional


class FlowKubeError(Exception):
    """Base class for every error raised by flowkube."""


class ValidationError(FlowKubeError, ValueError):
    """Input rejected before any cluster call was made."""


class ClusterCallError(FlowKubeError):
    """A call against the Kubernetes API failed."""

    def __init__(
        self,
        operation: str,
        kind: str,
        name: Optional[str],
        namespace: Optional[str],
        cause: BaseException,
    ):
        self.operation = operation
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.cause = cause
        self.status = getattr(cause, "status", None)
        super().__init__(self._format())

    def _format(self) -> str:
        target = f'{self.kind} "{self.name}"' if self.name else self.kind
        msg = f'Failed to {self.operation} {target} in namespace "{self.namespace}": {_describe(self.cause)}'
        if self.status:
            msg += f" (status {self.status})"
        return msg


class WatchStreamError(ClusterCallError):
    """The watch stream failed before the condition was decided."""

    def __init__(self, kind: str, name: str, namespace: str, cause: BaseException):
        super().__init__("watch", kind, name, namespace, cause)


class WatchTimeoutError(FlowKubeError, TimeoutError):
    def __init__(self, kind: str, name: str, condition: str, timeout: float):
        self.kind = kind
        self.name = name
        self.condition = condition
        self.timeout = timeout
        super().__init__(
            f"Timeout waiting for {kind}/{name} condition: {condition} (after {timeout:g}s)"
        )


class ExpectedAbortError(FlowKubeError):
    """Stream error caused by our own close of that stream.

    Only used internally to tag the echo of a deliberate close; it is never
    raised to callers.
    """

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"aborted: {_describe(cause)}")


def _describe(exc: BaseException) -> str:
    # ApiException keeps the useful text in reason/body rather than str()
    reason = getattr(exc, "reason", None)
    body = getattr(exc, "body", None)
    if reason and body:
        return f"{reason}: {body}"
    if reason:
        return str(reason)
    return str(exc) or exc.__class__.__name__

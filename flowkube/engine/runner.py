import logging
import time
from typing import Any, Callable, Dict, List, Optional

from flowkube import config
from flowkube.errors import ValidationError
from flowkube.kube.client import ClusterConfigSource, ClusterSession
from .context import FlowContext
from .dispatcher import execute_step

logger = logging.getLogger("flowkube.engine")

SessionFactory = Callable[[ClusterConfigSource], ClusterSession]


class RunSummary:
    def __init__(self):
        self.items_ok = 0
        self.items_fail = 0
        self.results: List[Any] = []
        self.start = time.time()

    @property
    def summary(self) -> str:
        dur = time.time() - self.start
        return f"items_ok={self.items_ok} items_fail={self.items_fail} duration_sec={round(dur, 2)}"


class OperationRunner:
    """Run one operation over a list of parameter items.

    A fresh :class:`ClusterSession` is built for each item, so items may carry
    their own cluster credentials under a ``cluster`` key.
    """

    def __init__(
        self,
        source: ClusterConfigSource,
        namespace: str = config.DEFAULT_NAMESPACE,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.source = source
        self.namespace = namespace
        self.session_factory = session_factory or ClusterSession.from_source

    async def run(
        self,
        operation: str,
        items: List[Dict[str, Any]],
        continue_on_fail: bool = False,
    ) -> RunSummary:
        result = RunSummary()
        for i, item in enumerate(items):
            try:
                out = await self._run_item(operation, item, i)
            except Exception as e:
                result.items_fail += 1
                if not continue_on_fail:
                    logger.error("Operation %s failed on item %d: %s", operation, i, e)
                    raise
                logger.warning("Operation %s failed on item %d, continuing: %s", operation, i, e)
                result.results.append({"error": str(e)})
                continue
            result.items_ok += 1
            result.results.append(out)
        logger.info("Operation %s done: %s", operation, result.summary)
        return result

    async def _run_item(self, operation: str, item: Dict[str, Any], index: int) -> Any:
        if not isinstance(item, dict):
            raise ValidationError(f"item {index} must be a mapping of parameters")
        step = dict(item)
        cluster = step.pop("cluster", None)
        source = ClusterConfigSource.from_dict(cluster) if cluster else self.source

        ctx = FlowContext(
            session=self.session_factory(source),
            namespace=step.get("namespace") or self.namespace,
        ).for_operation(operation, index)
        ctx.log.debug("Running %s", operation)
        return await execute_step(operation, step, ctx)

import logging
from dataclasses import dataclass
from typing import Optional

from flowkube import config
from flowkube.kube.client import ClusterSession


class StepLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['operation']} #{self.extra['item']}] {msg}", kwargs


@dataclass
class FlowContext:
    session: ClusterSession
    namespace: str = config.DEFAULT_NAMESPACE
    log: Optional[logging.LoggerAdapter] = None

    def for_operation(self, operation: str, item: int) -> "FlowContext":
        logger = logging.getLogger(f"flowkube.steps.{operation}")
        return FlowContext(
            session=self.session,
            namespace=self.namespace,
            log=StepLogAdapter(logger, {"operation": operation, "item": item}),
        )

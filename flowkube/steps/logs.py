from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import get_logs, get_logs_by_label_selector
from .params import bool_param, int_param, required

BY_POD_NAME = "podName"
BY_LABEL_SELECTOR = "labelSelector"


async def handle(step: dict, ctx: FlowContext):
    method = step.get("logsPodSelectionMethod") or BY_POD_NAME
    namespace = step.get("logsNamespace") or ctx.namespace
    opts = dict(
        container=step.get("logsContainer") or None,
        follow=bool_param(step, "logsFollow", False),
        tail_lines=int_param(step, "logsTail", 100),
        since_time=step.get("logsSinceTime") or None,
        log=ctx.log,
    )

    if method == BY_POD_NAME:
        name = required(step, "logsPodName", "logs")
        return {"podName": name, "logs": await get_logs(ctx.session, name, namespace, **opts)}
    if method == BY_LABEL_SELECTOR:
        selector = required(step, "logsLabelSelector", "logs")
        return await get_logs_by_label_selector(ctx.session, selector, namespace, **opts)
    raise ValidationError(
        f"logs.logsPodSelectionMethod must be {BY_POD_NAME} or {BY_LABEL_SELECTOR}, got {method!r}"
    )

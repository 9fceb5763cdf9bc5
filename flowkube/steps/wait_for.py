from flowkube.engine.context import FlowContext
from flowkube.kube import wait_for_resource
from .params import int_param, required


async def handle(step: dict, ctx: FlowContext) -> dict:
    return await wait_for_resource(
        ctx.session,
        required(step, "waitApiVersion", "wait"),
        required(step, "waitKind", "wait"),
        required(step, "waitResourceName", "wait"),
        step.get("waitNamespace") or ctx.namespace,
        required(step, "waitCondition", "wait"),
        timeout=int_param(step, "waitTimeout", 300),
        log=ctx.log,
    )

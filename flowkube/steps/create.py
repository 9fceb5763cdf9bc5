from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import create_resource, wait_for_resource
from flowkube.util.aio import run_blocking
from .params import int_param, json_param, required

NO_WAIT = "none"


async def handle(step: dict, ctx: FlowContext) -> dict:
    required(step, "createResourceJson", "create")
    manifest = json_param(step, "createResourceJson")
    if not isinstance(manifest, dict):
        raise ValidationError("create.createResourceJson must be a JSON object")
    namespace = step.get("createNamespace") or ctx.namespace
    condition = step.get("createWatchCondition") or NO_WAIT

    created = await run_blocking(create_resource, ctx.session, manifest, namespace)
    meta = created.get("metadata") or {}
    ctx.log.info("Created %s %s/%s", created.get("kind"), namespace, meta.get("name"))
    if condition == NO_WAIT:
        return created

    waited = await wait_for_resource(
        ctx.session,
        created.get("apiVersion") or manifest["apiVersion"],
        created.get("kind") or manifest["kind"],
        meta.get("name"),
        namespace,
        condition,
        timeout=int_param(step, "createWatchTimeout", 300),
        log=ctx.log,
    )
    return {"created": created, "wait": waited}

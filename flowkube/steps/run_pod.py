from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import format_output, run_pod_and_get_logs
from .params import int_param, json_param, required


async def handle(step: dict, ctx: FlowContext) -> dict:
    image = required(step, "image", "run")
    command = json_param(step, "command")
    if not isinstance(command, list) or not command:
        raise ValidationError("run.command must be a non-empty JSON array of strings")
    namespace = step.get("namespace") or ctx.namespace

    out = await run_pod_and_get_logs(
        ctx.session,
        image,
        [str(c) for c in command],
        namespace=namespace,
        pod_name=step.get("podName") or None,
        timeout=int_param(step, "timeoutSeconds", 300),
        log=ctx.log,
    )
    return {"output": format_output(out)}

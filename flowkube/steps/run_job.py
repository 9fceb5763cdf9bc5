from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import run_job
from .params import bool_param, int_param, json_param, required


async def handle(step: dict, ctx: FlowContext) -> dict:
    command = json_param(step, "jobCommand")
    if not isinstance(command, list) or not command:
        raise ValidationError("createJob.jobCommand must be a non-empty JSON array of strings")

    result = await run_job(
        ctx.session,
        required(step, "jobName", "createJob"),
        required(step, "jobImage", "createJob"),
        [str(c) for c in command],
        namespace=step.get("jobNamespace") or ctx.namespace,
        restart_policy=step.get("restartPolicy") or "Never",
        cleanup=bool_param(step, "cleanupJob", True),
        timeout=int_param(step, "timeoutSeconds", 300),
        log=ctx.log,
    )
    return result.as_dict()

from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import JobOverrideSet, trigger_cronjob
from .params import bool_param, int_param, json_param, required


async def handle(step: dict, ctx: FlowContext) -> dict:
    overrides = json_param(step, "cronJobOverrides") or {}
    if not isinstance(overrides, dict):
        raise ValidationError("triggerCronJob.cronJobOverrides must be an object")

    result = await trigger_cronjob(
        ctx.session,
        required(step, "cronJobName", "triggerCronJob"),
        namespace=step.get("cronJobNamespace") or ctx.namespace,
        cleanup=bool_param(step, "cronJobCleanup", True),
        overrides=JobOverrideSet.from_params(overrides),
        timeout=int_param(step, "timeoutSeconds", 300),
        log=ctx.log,
    )
    return result.as_dict()

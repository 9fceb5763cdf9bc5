from typing import Any, Awaitable, Callable, Dict

from flowkube.errors import ValidationError
from flowkube.steps import (
    create as step_create,
    logs as step_logs,
    resource as step_resource,
    run_job as step_run_job,
    run_pod as step_run_pod,
    trigger_cronjob as step_trigger_cronjob,
    wait_for as step_wait_for,
)
from .context import FlowContext

Handler = Callable[[dict, FlowContext], Awaitable[Any]]

_HANDLERS: Dict[str, Handler] = {
    "run": step_run_pod.handle,
    "createJob": step_run_job.handle,
    "triggerCronJob": step_trigger_cronjob.handle,
    "patch": step_resource.handle_patch,
    "get": step_resource.handle_get,
    "list": step_resource.handle_list,
    "create": step_create.handle,
    "wait": step_wait_for.handle,
    "logs": step_logs.handle,
}

OPERATIONS = tuple(_HANDLERS)


async def execute_step(operation: str, step: dict, ctx: FlowContext) -> Any:
    handler = _HANDLERS.get(operation)
    if not handler:
        raise ValidationError(
            f"unsupported operation '{operation}', expected one of {', '.join(OPERATIONS)}"
        )
    return await handler(step, ctx)

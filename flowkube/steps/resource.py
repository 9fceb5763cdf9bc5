from flowkube.engine.context import FlowContext
from flowkube.errors import ValidationError
from flowkube.kube import get_resource, list_resources, patch_resource
from flowkube.util.aio import run_blocking
from .params import json_param, required


def _target(step: dict, ctx: FlowContext, operation: str):
    return (
        required(step, "apiVersion", operation),
        required(step, "kind", operation),
        step.get("resourceNamespace") or ctx.namespace,
    )


async def handle_get(step: dict, ctx: FlowContext):
    api_version, kind, namespace = _target(step, ctx, "get")
    name = required(step, "resourceName", "get")
    ctx.log.info("Getting %s %s/%s", kind, namespace, name)
    return await run_blocking(get_resource, ctx.session, api_version, kind, name, namespace)


async def handle_list(step: dict, ctx: FlowContext):
    api_version, kind, namespace = _target(step, ctx, "list")
    ctx.log.info("Listing %s in %s", kind, namespace)
    return await run_blocking(
        list_resources, ctx.session, api_version, kind, namespace,
        label_selector=step.get("labelSelector") or None,
    )


async def handle_patch(step: dict, ctx: FlowContext):
    api_version, kind, namespace = _target(step, ctx, "patch")
    name = required(step, "resourceName", "patch")
    patch = json_param(step, "patchData")
    if not isinstance(patch, dict):
        raise ValidationError("patch.patchData must be a JSON object")
    ctx.log.info("Patching %s %s/%s", kind, namespace, name)
    return await run_blocking(
        patch_resource, ctx.session, api_version, kind, name, namespace, patch
    )

from .client import ClusterConfigSource, ClusterSession
from .conditions import evaluate
from .cronjobs import JobOverrideSet, trigger_cronjob
from .exec import run_pod_and_get_logs
from .jobs import RunResult, run_job
from .logs import format_output, get_logs, get_logs_by_label_selector
from .resources import (
    create_resource,
    delete_resource,
    get_resource,
    list_resources,
    patch_resource,
)
from .wait import wait_for_resource

__all__ = [
    "ClusterConfigSource",
    "ClusterSession",
    "evaluate",
    "JobOverrideSet",
    "trigger_cronjob",
    "run_pod_and_get_logs",
    "RunResult",
    "run_job",
    "format_output",
    "get_logs",
    "get_logs_by_label_selector",
    "create_resource",
    "delete_resource",
    "get_resource",
    "list_resources",
    "patch_resource",
    "wait_for_resource",
]

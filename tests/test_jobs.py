from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from kubernetes.client import ApiException

from conftest import FakeLogResponse, event, pod_model
from flowkube.errors import ValidationError, WatchTimeoutError
from flowkube.kube import jobs
from flowkube.kube.jobs import (
    build_job,
    find_job_pods,
    generate_job_name,
    run_job,
    run_job_manifest,
    validate_name,
)
from flowkube.kube.wait import Aborted


def _created_job_name(session):
    return session.batch.create_namespaced_job.call_args.kwargs["body"]["metadata"]["name"]


def _finished(session, **status):
    return lambda: [event(_created_job_name(session), status)]


@pytest.mark.parametrize("name", ["my-job", "a", "job1", "a" * 63])
def test_valid_names(name):
    assert validate_name(name) == name


@pytest.mark.parametrize("name", ["", "MyJob", "-job", "job-", "my_job", "a" * 64])
def test_invalid_names(name):
    with pytest.raises(ValidationError):
        validate_name(name)


def test_generated_name_has_random_suffix():
    name = generate_job_name("nightly")
    base, suffix = name.rsplit("-", 1)
    assert base == "nightly"
    assert len(suffix) == 6
    assert suffix.isalnum() and suffix == suffix.lower()


def test_generated_name_must_fit_63_chars():
    generate_job_name("a" * 56)
    with pytest.raises(ValidationError):
        generate_job_name("a" * 57)


def test_build_job_is_labelled():
    job = build_job("j-abc123", "busybox", ["echo", "hi"])
    assert job["metadata"]["labels"]["managed-by-automation"] == "flowkube"
    assert job["spec"]["template"]["metadata"]["labels"]["managed-by-automation"] == "flowkube"
    assert job["spec"]["template"]["spec"]["restartPolicy"] == "Never"
    container = job["spec"]["template"]["spec"]["containers"][0]
    assert container["name"] == "main-container"
    assert container["args"] == ["echo", "hi"]
    assert "command" not in container
    assert "backoffLimit" not in job["spec"]


def test_result_dict_uses_camel_case_keys():
    plain = jobs.RunResult("etl-1", "data", "succeeded", "ok", "ok", True, succeeded=1)
    assert plain.as_dict() == {
        "jobName": "etl-1", "namespace": "data", "status": "succeeded", "rawOutput": "ok",
        "output": "ok", "cleaned": True, "succeeded": 1, "failed": 0,
    }

    cron = jobs.RunResult(
        "b-1", "ops", "failed", "", "", False,
        cron_job_name="b", created_at="2024-01-01T00:00:00Z", overrides_applied=True,
    )
    data = cron.as_dict()
    assert data["cronJobName"] == "b"
    assert data["createdAt"] == "2024-01-01T00:00:00Z"
    assert data["overridesApplied"] is True


def test_find_job_pods_falls_back_to_batch_label(session):
    def list_pods(namespace, label_selector):
        if label_selector == "job-name=j":
            return SimpleNamespace(items=[])
        return SimpleNamespace(items=[pod_model("j-pod")])

    session.core.list_namespaced_pod.side_effect = list_pods

    pods = find_job_pods(session, "j", "default")

    assert [p.metadata.name for p in pods] == ["j-pod"]
    assert session.core.list_namespaced_pod.call_count == 2
    assert session.core.list_namespaced_pod.call_args.kwargs["label_selector"] == "batch.kubernetes.io/job-name=j"


def test_find_job_pods_falls_back_when_first_selector_fails(session):
    session.core.list_namespaced_pod.side_effect = [
        ApiException(status=500, reason="boom"),
        SimpleNamespace(items=[pod_model("j-pod")]),
    ]

    assert len(find_job_pods(session, "j", "default")) == 1


@pytest.mark.asyncio
async def test_run_job_success_collects_logs_and_cleans_up(session, fake_watch, fast_logs):
    fake_watch.events = _finished(session, succeeded=1)
    session.core.list_namespaced_pod.return_value.items = [pod_model("p1", containers=("worker",))]
    session.core.read_namespaced_pod_log.return_value = FakeLogResponse([b'{"rows": 3}'])

    result = await run_job(session, "etl", "busybox", ["run"], namespace="data", timeout=2)

    assert result.status == "succeeded"
    assert result.name.startswith("etl-")
    assert result.namespace == "data"
    assert result.raw_output == '{"rows": 3}'
    assert result.output == {"rows": 3}
    assert result.cleaned is True
    session.batch.delete_namespaced_job.assert_called_once_with(
        namespace="data", name=result.name, propagation_policy="Background"
    )
    assert session.core.read_namespaced_pod_log.call_args.kwargs["container"] == "worker"
    assert "cronJobName" not in result.as_dict()


@pytest.mark.asyncio
async def test_failed_job_without_cleanup(session, fake_watch, fast_logs):
    fake_watch.events = _finished(session, failed=1)
    session.core.list_namespaced_pod.return_value.items = [pod_model("p1")]
    session.core.read_namespaced_pod_log.return_value = FakeLogResponse([b"error: exit 1"])

    result = await run_job(session, "etl", "busybox", ["run"], cleanup=False, timeout=2)

    assert result.status == "failed"
    assert result.output == "error: exit 1"
    assert result.cleaned is False
    session.batch.delete_namespaced_job.assert_not_called()


@pytest.mark.asyncio
async def test_log_failure_degrades_to_status_message(session, fake_watch):
    fake_watch.events = _finished(session, succeeded=2)
    session.core.list_namespaced_pod.return_value.items = [pod_model("p1")]
    session.core.read_namespaced_pod_log.side_effect = ApiException(status=400, reason="Bad Request")

    result = await run_job(session, "etl", "busybox", ["run"], timeout=2)

    assert result.status == "succeeded"
    assert result.output == "Job completed successfully. 2 pod(s) succeeded."


@pytest.mark.asyncio
async def test_no_pods_found(session, fake_watch):
    fake_watch.events = _finished(session, failed=1)
    session.core.list_namespaced_pod.return_value.items = []

    result = await run_job(session, "etl", "busybox", ["run"], timeout=2)

    assert result.output == f"No pods found for job {result.name}"


@pytest.mark.asyncio
async def test_cleanup_failure_is_reported(session, fake_watch, fast_logs):
    fake_watch.events = _finished(session, succeeded=1)
    session.core.list_namespaced_pod.return_value.items = [pod_model("p1")]
    session.core.read_namespaced_pod_log.return_value = FakeLogResponse([b"ok"])
    session.batch.delete_namespaced_job.side_effect = ApiException(status=403, reason="Forbidden")

    result = await run_job(session, "etl", "busybox", ["run"], timeout=2)

    assert result.status == "succeeded"
    assert result.cleaned is False


@pytest.mark.asyncio
async def test_timeout_deletes_job_then_raises(session, fake_watch):
    with pytest.raises(WatchTimeoutError):
        await run_job(session, "etl", "busybox", ["run"], timeout=0.2)

    session.batch.delete_namespaced_job.assert_called_once()


@pytest.mark.asyncio
async def test_aborted_watch_reports_unknown(session, monkeypatch):
    monkeypatch.setattr(jobs, "watch_until", AsyncMock(return_value=Aborted()))
    manifest = build_job("etl-abc123", "busybox", ["run"])

    result = await run_job_manifest(session, manifest, "default")

    assert result.status == "unknown"
    assert result.output == "Job watch was aborted"
    assert result.cleaned is False
    session.batch.delete_namespaced_job.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_job_input_fails_before_cluster_calls(session):
    with pytest.raises(ValidationError):
        await run_job(session, "MyJob", "busybox", ["run"])
    with pytest.raises(ValidationError):
        await run_job(session, "etl", "", ["run"])
    with pytest.raises(ValidationError):
        await run_job(session, "etl", "busybox", ["run"], restart_policy="Always")
    session.batch.create_namespaced_job.assert_not_called()


def test_job_name_over_63_chars_rejected_before_cluster_calls():
    with pytest.raises(ValidationError, match="too long"):
        validate_name("my-job-" + "a" * 58)

from datetime import datetime, timezone

import pytest
from kubernetes.client import ApiException

from conftest import FakeLogResponse, event, pod_model
from flowkube.errors import ClusterCallError, ValidationError
from flowkube.kube.cronjobs import (
    CREATED_FROM_ANNOTATION,
    OVERRIDES_ANNOTATION,
    TRIGGERED_AT_ANNOTATION,
    JobOverrideSet,
    apply_overrides,
    build_job_from_cronjob,
    merge_envs,
    trigger_cronjob,
)


def _cronjob(name="backup", containers=None):
    containers = containers or [
        {"name": "main", "image": "busybox", "command": ["backup"], "env": [{"name": "A", "value": "1"}]},
    ]
    return {
        "apiVersion": "batch/v1",
        "kind": "CronJob",
        "metadata": {"name": name, "namespace": "ops"},
        "spec": {
            "schedule": "0 * * * *",
            "jobTemplate": {
                "metadata": {"labels": {"team": "ops"}},
                "spec": {
                    "template": {
                        "spec": {"containers": containers, "restartPolicy": "OnFailure"},
                    },
                },
            },
        },
    }


def test_merge_envs_replaces_by_name_and_appends():
    existing = [{"name": "A", "value": "1"}, {"name": "B", "value": "2"}]
    merged = merge_envs(existing, [("B", "9"), ("C", "3")])
    assert merged == [
        {"name": "A", "value": "1"},
        {"name": "B", "value": "9"},
        {"name": "C", "value": "3"},
    ]
    assert existing[1] == {"name": "B", "value": "2"}


def test_overrides_from_params_skip_incomplete_envs():
    overrides = JobOverrideSet.from_params({
        "overrideCommand": '["sh", "-c"]',
        "overrideArgs": ["echo hi"],
        "overrideEnvs": {"env": [
            {"name": "X", "value": "1"},
            {"name": "", "value": "ignored"},
            {"name": "Y"},
            {"name": "Z", "value": ""},
        ]},
    })
    assert overrides.command == ["sh", "-c"]
    assert overrides.args == ["echo hi"]
    assert overrides.envs == [("X", "1"), ("Z", "")]


def test_overrides_reject_invalid_json():
    with pytest.raises(ValidationError):
        JobOverrideSet.from_params({"overrideCommand": "[not json"})


def test_override_envs_accept_json_text():
    overrides = JobOverrideSet.from_params({"overrideEnvs": '{"env": [{"name": "B", "value": 9}]}'})
    assert overrides.envs == [("B", "9")]


@pytest.mark.parametrize("envs", [
    [{"name": "B", "value": "9"}],
    {"env": ["B=9"]},
    {"env": {"name": "B", "value": "9"}},
    '["B=9"]',
    "{broken",
])
def test_malformed_override_envs_raise_validation_error(envs):
    with pytest.raises(ValidationError, match="overrideEnvs"):
        JobOverrideSet.from_params({"overrideEnvs": envs})


def test_empty_overrides_leave_containers_alone():
    spec = {"containers": [{"name": "c", "command": ["a"], "args": ["b"]}]}
    apply_overrides(spec, JobOverrideSet(command=[], args=None))
    assert spec["containers"][0] == {"name": "c", "command": ["a"], "args": ["b"]}


def test_overrides_apply_to_every_container():
    spec = {"containers": [{"name": "a"}, {"name": "b", "env": [{"name": "K", "value": "old"}]}]}
    apply_overrides(spec, JobOverrideSet(command=["run"], envs=[("K", "new")]))
    assert [c["command"] for c in spec["containers"]] == [["run"], ["run"]]
    assert spec["containers"][1]["env"] == [{"name": "K", "value": "new"}]
    assert spec["containers"][0]["env"] == [{"name": "K", "value": "new"}]


def test_build_job_from_cronjob_labels_and_annotations():
    cron = _cronjob()
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    job = build_job_from_cronjob(cron, "backup-1714521600", JobOverrideSet(args=["--full"]), now)

    meta = job["metadata"]
    assert meta["name"] == "backup-1714521600"
    assert meta["labels"] == {
        "team": "ops",
        "cronjob": "backup",
        "manual-trigger": "true",
        "managed-by-automation": "flowkube",
    }
    assert meta["annotations"][CREATED_FROM_ANNOTATION] == "backup"
    assert meta["annotations"][TRIGGERED_AT_ANNOTATION] == now.isoformat()
    assert meta["annotations"][OVERRIDES_ANNOTATION] == "true"
    pod_template = job["spec"]["template"]
    assert pod_template["metadata"]["labels"]["managed-by-automation"] == "flowkube"
    assert pod_template["spec"]["containers"][0]["args"] == ["--full"]
    # the CronJob template itself is untouched
    assert "args" not in cron["spec"]["jobTemplate"]["spec"]["template"]["spec"]["containers"][0]


def test_build_job_without_overrides_has_no_overrides_annotation():
    job = build_job_from_cronjob(_cronjob(), "backup-1", None)
    assert OVERRIDES_ANNOTATION not in job["metadata"]["annotations"]


def test_cronjob_without_job_template_is_rejected():
    cron = _cronjob()
    cron["spec"]["jobTemplate"] = {}
    with pytest.raises(ValidationError):
        build_job_from_cronjob(cron, "backup-1")


@pytest.mark.asyncio
async def test_trigger_cronjob_runs_derived_job(session, fake_watch, fast_logs):
    session.batch.read_namespaced_cron_job.return_value = _cronjob()

    def finished():
        body = session.batch.create_namespaced_job.call_args.kwargs["body"]
        return [event(body["metadata"]["name"], {"succeeded": 1})]

    fake_watch.events = finished
    session.core.list_namespaced_pod.return_value.items = [pod_model("backup-pod")]
    session.core.read_namespaced_pod_log.return_value = FakeLogResponse([b"backed up"])

    result = await trigger_cronjob(
        session, "backup", namespace="ops",
        overrides=JobOverrideSet(envs=[("A", "2")]), timeout=2,
    )

    body = session.batch.create_namespaced_job.call_args.kwargs["body"]
    assert body["metadata"]["name"].startswith("backup-")
    assert body["spec"]["template"]["spec"]["containers"][0]["env"] == [{"name": "A", "value": "2"}]
    assert result.status == "succeeded"
    assert result.output == "backed up"
    assert result.cron_job_name == "backup"
    assert result.overrides_applied is True
    assert result.created_at
    assert result.as_dict()["cronJobName"] == "backup"
    assert result.cleaned is True


@pytest.mark.asyncio
async def test_trigger_missing_cronjob(session):
    session.batch.read_namespaced_cron_job.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(ClusterCallError) as exc:
        await trigger_cronjob(session, "missing", namespace="ops")

    assert exc.value.status == 404
    session.batch.create_namespaced_job.assert_not_called()


@pytest.mark.asyncio
async def test_trigger_rejects_bad_cronjob_name(session):
    with pytest.raises(ValidationError):
        await trigger_cronjob(session, "Backup_Job")
    session.batch.read_namespaced_cron_job.assert_not_called()

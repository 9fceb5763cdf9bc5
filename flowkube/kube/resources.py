import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from kubernetes.client import ApiException

from flowkube import config
from flowkube.errors import ClusterCallError, ValidationError
from .client import ClusterSession

logger = logging.getLogger("flowkube.kube")

MERGE_PATCH = "application/merge-patch+json"

# apiVersion -> (session attribute, {kind: (method suffix, plural)})
RESOURCE_CONFIGS: Dict[str, Tuple[str, Dict[str, Tuple[str, str]]]] = {
    "v1": (
        "core",
        {
            "pod": ("pod", "pods"),
            "service": ("service", "services"),
            "configmap": ("config_map", "configmaps"),
            "secret": ("secret", "secrets"),
            "persistentvolumeclaim": ("persistent_volume_claim", "persistentvolumeclaims"),
            "namespace": ("namespace", "namespaces"),
        },
    ),
    "apps/v1": (
        "apps",
        {
            "deployment": ("deployment", "deployments"),
            "replicaset": ("replica_set", "replicasets"),
            "daemonset": ("daemon_set", "daemonsets"),
            "statefulset": ("stateful_set", "statefulsets"),
        },
    ),
    "batch/v1": (
        "batch",
        {
            "job": ("job", "jobs"),
            "cronjob": ("cron_job", "cronjobs"),
        },
    ),
    "networking.k8s.io/v1": (
        "networking",
        {
            "ingress": ("ingress", "ingresses"),
            "networkpolicy": ("network_policy", "networkpolicies"),
        },
    ),
}

CLUSTER_SCOPED = {"namespace"}

_CUSTOM_VERBS = {
    "read": "get",
    "list": "list",
    "create": "create",
    "patch": "patch",
    "delete": "delete",
}

_RUNTIME_METADATA = (
    "creationTimestamp",
    "deletionTimestamp",
    "resourceVersion",
    "uid",
    "generation",
    "managedFields",
    "ownerReferences",
    "finalizers",
    "selfLink",
)

_RUNTIME_ANNOTATIONS = (
    "kubectl.kubernetes.io/last-applied-configuration",
    "deployment.kubernetes.io/revision",
)


@dataclass(frozen=True)
class ResourceKey:
    api_version: str
    kind: str
    namespace: Optional[str] = None
    name: Optional[str] = None

    @property
    def kind_lower(self) -> str:
        return self.kind.lower()

    @property
    def group_version(self) -> Tuple[str, str]:
        if "/" in self.api_version:
            group, version = self.api_version.split("/", 1)
            return group, version
        return "", self.api_version

    @property
    def is_builtin(self) -> bool:
        cfg = RESOURCE_CONFIGS.get(self.api_version)
        return bool(cfg) and self.kind_lower in cfg[1]

    @property
    def is_custom(self) -> bool:
        return not self.is_builtin and "/" in self.api_version

    @property
    def plural(self) -> str:
        cfg = RESOURCE_CONFIGS.get(self.api_version)
        if cfg and self.kind_lower in cfg[1]:
            return cfg[1][self.kind_lower][1]
        # Naive pluralization; irregular plurals (e.g. "Policy") are not handled
        return f"{self.kind_lower}s"

    def collection_path(self) -> str:
        group, version = self.group_version
        base = f"/api/{version}" if not group else f"/apis/{group}/{version}"
        if self.kind_lower in CLUSTER_SCOPED and self.is_builtin:
            return f"{base}/{self.plural}"
        return f"{base}/namespaces/{self.namespace}/{self.plural}"

    def describe(self) -> str:
        return f"{self.kind}/{self.name}" if self.name else self.kind


def _typed_api(session: ClusterSession, key: ResourceKey):
    cfg = RESOURCE_CONFIGS.get(key.api_version)
    if not cfg or key.kind_lower not in cfg[1]:
        raise ValidationError(
            f"Unsupported resource type: {key.kind} for API version: {key.api_version}"
        )
    attr, kinds = cfg
    suffix = kinds[key.kind_lower][0]
    return getattr(session, attr), suffix, key.kind_lower not in CLUSTER_SCOPED


def resolve_method(session: ClusterSession, key: ResourceKey, verb: str) -> Tuple[Callable, Dict[str, Any]]:
    """Find the client method and its addressing kwargs for ``verb`` on ``key``."""
    if key.is_custom:
        group, version = key.group_version
        fn = getattr(session.custom, f"{_CUSTOM_VERBS[verb]}_namespaced_custom_object")
        kwargs: Dict[str, Any] = {
            "group": group,
            "version": version,
            "namespace": key.namespace,
            "plural": key.plural,
        }
    else:
        api, suffix, namespaced = _typed_api(session, key)
        if namespaced:
            fn = getattr(api, f"{verb}_namespaced_{suffix}")
            kwargs = {"namespace": key.namespace}
        else:
            fn = getattr(api, f"{verb}_{suffix}")
            kwargs = {}
    if verb in ("read", "patch", "delete"):
        if not key.name:
            raise ValidationError(f"{verb} {key.kind} requires a resource name")
        kwargs["name"] = key.name
    return fn, kwargs


def call(session: ClusterSession, key: ResourceKey, verb: str, body: Any = None, **extra):
    fn, kwargs = resolve_method(session, key, verb)
    if body is not None:
        kwargs["body"] = body
    kwargs.update(extra)
    logger.debug("%s %s in %s", verb, key.describe(), key.namespace)
    try:
        return fn(**kwargs)
    except ApiException as e:
        raise ClusterCallError(verb, key.kind, key.name, key.namespace, e) from e


def get_resource(session: ClusterSession, api_version: str, kind: str, name: str, namespace: str):
    key = ResourceKey(api_version, kind, namespace, name)
    return session.to_plain(call(session, key, "read"))


def list_resources(
    session: ClusterSession,
    api_version: str,
    kind: str,
    namespace: str,
    label_selector: Optional[str] = None,
):
    key = ResourceKey(api_version, kind, namespace)
    extra = {"label_selector": label_selector} if label_selector else {}
    return session.to_plain(call(session, key, "list", **extra))


def patch_resource(
    session: ClusterSession,
    api_version: str,
    kind: str,
    name: str,
    namespace: str,
    patch: Dict[str, Any],
):
    if not isinstance(patch, dict):
        raise ValidationError("Patch data must be a JSON object")
    key = ResourceKey(api_version, kind, namespace, name)
    return session.to_plain(call(session, key, "patch", body=patch, _content_type=MERGE_PATCH))


def delete_resource(
    session: ClusterSession,
    api_version: str,
    kind: str,
    name: str,
    namespace: str,
    propagation_policy: Optional[str] = None,
):
    key = ResourceKey(api_version, kind, namespace, name)
    extra = {"propagation_policy": propagation_policy} if propagation_policy else {}
    return session.to_plain(call(session, key, "delete", **extra))


def create_resource(session: ClusterSession, manifest: Dict[str, Any], namespace: str):
    if not isinstance(manifest, dict):
        raise ValidationError("Resource definition must be a JSON object")
    api_version = manifest.get("apiVersion")
    kind = manifest.get("kind")
    if not api_version or not kind:
        raise ValidationError("Resource definition requires apiVersion and kind")
    body = add_managed_labels(clean_manifest(manifest))
    name = (body.get("metadata") or {}).get("name")
    key = ResourceKey(api_version, kind, namespace, name)
    return session.to_plain(call(session, key, "create", body=body))


def list_pods(session: ClusterSession, namespace: str, selector: str):
    key = ResourceKey("v1", "Pod", namespace)
    return call(session, key, "list", label_selector=selector).items


def clean_manifest(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Drop server-populated fields so a fetched object can be created again."""
    cleaned = copy.deepcopy(manifest)
    meta = cleaned.get("metadata")
    if isinstance(meta, dict):
        for f in _RUNTIME_METADATA:
            meta.pop(f, None)
        annotations = meta.get("annotations")
        if isinstance(annotations, dict):
            for a in _RUNTIME_ANNOTATIONS:
                annotations.pop(a, None)
            if not annotations:
                del meta["annotations"]

    cleaned.pop("status", None)

    spec = cleaned.get("spec")
    if isinstance(spec, dict):
        if str(cleaned.get("kind", "")).lower() == "pod":
            spec.pop("nodeName", None)
            for c in spec.get("containers") or []:
                c.pop("terminationMessagePath", None)
                c.pop("terminationMessagePolicy", None)
        template_meta = (spec.get("template") or {}).get("metadata")
        if isinstance(template_meta, dict):
            template_meta.pop("creationTimestamp", None)
    return cleaned


def add_managed_labels(manifest: Dict[str, Any], labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    extra = dict(labels or {})
    _stamp(manifest, extra)

    template = (manifest.get("spec") or {}).get("template")
    if isinstance(template, dict):
        _stamp(template, extra)
    return manifest


def _stamp(obj: Dict[str, Any], labels: Dict[str, str]) -> None:
    meta = obj.get("metadata") or {}
    obj["metadata"] = meta
    meta_labels = meta.get("labels") or {}
    meta["labels"] = meta_labels
    meta_labels[config.MANAGED_BY_LABEL] = config.MANAGED_BY_VALUE
    meta_labels.update(labels)

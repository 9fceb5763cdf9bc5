import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from flowkube.errors import ValidationError

logger = logging.getLogger("flowkube.kube")

LOAD_FROM_CHOICES = ("automatic", "file", "content")


@dataclass(frozen=True)
class ClusterConfigSource:
    load_from: str = "automatic"
    file_path: Optional[str] = None
    content: Optional[str] = None
    context: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterConfigSource":
        return cls(
            load_from=data.get("loadFrom", "automatic"),
            file_path=data.get("filePath") or None,
            content=data.get("content") or None,
            context=data.get("context") or None,
        )


@dataclass(frozen=True)
class ClusterSession:
    """Typed sub-clients sharing one resolved cluster configuration."""

    api_client: Any
    core: Any
    apps: Any
    batch: Any
    networking: Any
    custom: Any

    @classmethod
    def from_api_client(cls, api_client: client.ApiClient) -> "ClusterSession":
        return cls(
            api_client=api_client,
            core=client.CoreV1Api(api_client),
            apps=client.AppsV1Api(api_client),
            batch=client.BatchV1Api(api_client),
            networking=client.NetworkingV1Api(api_client),
            custom=client.CustomObjectsApi(api_client),
        )

    @classmethod
    def from_source(cls, source: ClusterConfigSource) -> "ClusterSession":
        configuration = load_configuration(source)
        return cls.from_api_client(client.ApiClient(configuration))

    def to_plain(self, obj: Any) -> Any:
        """Model objects to the camelCase dicts the API server speaks."""
        if obj is None or isinstance(obj, (dict, list, str)):
            return obj
        return self.api_client.sanitize_for_serialization(obj)


def load_configuration(source: ClusterConfigSource) -> client.Configuration:
    try:
        return _load(source)
    except ConfigException as e:
        raise ValidationError(f"Could not load cluster configuration: {e}") from e


def _load(source: ClusterConfigSource) -> client.Configuration:
    configuration = client.Configuration()

    if source.load_from == "automatic":
        try:
            config.load_incluster_config(client_configuration=configuration)
            logger.debug("Loaded in-cluster configuration")
        except ConfigException:
            config.load_kube_config(
                context=source.context, client_configuration=configuration
            )
            logger.debug("Loaded default kubeconfig")
        return configuration

    if source.load_from == "file":
        if not source.file_path:
            raise ValidationError("File path not set!")
        config.load_kube_config(
            config_file=source.file_path,
            context=source.context,
            client_configuration=configuration,
        )
        logger.debug("Loaded kubeconfig from %s", source.file_path)
        return configuration

    if source.load_from == "content":
        if not source.content:
            raise ValidationError("Content not set!")
        try:
            config_dict = yaml.safe_load(source.content)
        except yaml.YAMLError as e:
            raise ValidationError(f"Kubeconfig content is not valid YAML: {e}") from e
        if not isinstance(config_dict, dict):
            raise ValidationError("Kubeconfig content must be a mapping")
        config.load_kube_config_from_dict(
            config_dict,
            context=source.context,
            client_configuration=configuration,
        )
        logger.debug("Loaded kubeconfig from inline content")
        return configuration

    raise ValidationError(
        f"Load from value not set! Expected one of {', '.join(LOAD_FROM_CHOICES)}"
    )

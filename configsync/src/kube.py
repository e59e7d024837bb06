from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiClient, ApiException, CoreV1Api
from kubernetes.config.config_exception import ConfigException

from configsync.src.resources import LabelSelector

LOGGER = logging.getLogger(__name__)


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.  Raises ``ConfigException``
    when neither is available.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_client() -> tuple[ApiClient, CoreV1Api]:
    """Return an ApiClient and a CoreV1 API bound to it, using the active kube configuration."""
    api_client = client.ApiClient()
    return api_client, client.CoreV1Api(api_client)


def validate_client(api_client: ApiClient) -> str:
    """Return the API server base URL, raising ``ValueError`` if the client has none."""
    configuration = getattr(api_client, "configuration", None)
    host = getattr(configuration, "host", None)
    if not host:
        raise ValueError("Kubernetes client has no API server host configured")
    return str(host)


def list_config_maps(core_api: CoreV1Api, namespace: str, selector: LabelSelector) -> list[Any]:
    """List ConfigMaps in *namespace* matching *selector*, in server order."""
    result = core_api.list_namespaced_config_map(
        namespace=namespace,
        label_selector=selector.render(),
    )
    return list(getattr(result, "items", None) or [])


def decode_secret_data(raw_data: dict[str, str] | None) -> dict[str, bytes]:
    """Decode a Secret's base64 ``data`` map into raw bytes per field.

    Raises ``ValueError`` naming the first field that is not valid base64;
    the value itself is never included.
    """
    material: dict[str, bytes] = {}
    for key, value in (raw_data or {}).items():
        if value is None:
            material[key] = b""
            continue
        try:
            material[key] = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Secret field {key!r} is not valid base64") from exc
    return material


def read_secret(core_api: CoreV1Api, namespace: str, name: str) -> dict[str, bytes] | None:
    """Read a Secret and return its decoded data, or ``None`` when it does not exist.

    API errors other than ``404 Not Found`` propagate to the caller, as does
    the ``ValueError`` for a field that cannot be decoded.
    """
    try:
        secret = core_api.read_namespaced_secret(name=name, namespace=namespace)
    except ApiException as exc:
        if exc.status == 404:
            return None
        raise
    if secret is None:
        return None
    return decode_secret_data(getattr(secret, "data", None))

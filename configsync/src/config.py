from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from configsync.src.resources import LabelSelector

DEFAULT_NAMESPACE_FILE = "/run/secrets/kubernetes.io/serviceaccount/namespace"
NAMESPACE_ENV_VAR = "KUBERNETES_NAMESPACE"
PASSWORD_ENV_VAR = "NEXUS_PASSWORD"
PASSWORD_FIELD = "password"
DEFAULT_PASSWORD = "admin123"
ADMIN_ACCOUNT = "admin"


class ConfigError(RuntimeError):
    """Raised when the sync configuration is invalid."""


@dataclass(frozen=True)
class SyncConfig:
    """Immutable process configuration loaded at startup.

    Attributes:
        namespace_file: Mounted service-account file holding the namespace.
        secret_name: Name of the Secret that seeds the admin password.
        repository_selector: Selects repository-config ConfigMaps.
        blobstore_selector: Selects blobstore-config ConfigMaps.
        watch_reconnect: Re-open a watch after its stream ends.  Off by
            default, in which case an ended watch stays stopped until restart.
        reconnect_max_backoff_seconds: Cap for the reconnect backoff.
        health_port: Port for ``/healthz``, ``/readyz`` and ``/metrics``.
        nexus_url: Base URL of the repository manager REST API.
    """

    namespace_file: str = DEFAULT_NAMESPACE_FILE
    secret_name: str = "nexus"
    repository_selector: LabelSelector = LabelSelector.parse("nexus-type==repository")
    blobstore_selector: LabelSelector = LabelSelector.parse("nexus-type==blobstore")
    watch_reconnect: bool = False
    reconnect_max_backoff_seconds: int = 30
    health_port: int = 8080
    nexus_url: str = "http://localhost:8081"
    nexus_api_user: str = ADMIN_ACCOUNT
    nexus_api_password: str = DEFAULT_PASSWORD
    nexus_request_timeout_seconds: int = 30


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def _selector(values: Mapping[str, str], name: str, default: str) -> LabelSelector:
    raw = values.get(name, default)
    try:
        return LabelSelector.parse(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} is not a valid label selector: {exc}") from exc


def load_config(env: Mapping[str, str] | None = None) -> SyncConfig:
    """Build a :class:`SyncConfig` from environment variables.

    Environment variables (with defaults):
        ``NAMESPACE_FILE``       — service-account namespace file.
        ``NEXUS_SECRET_NAME``    — Secret holding the admin password (``nexus``).
        ``REPOSITORY_SELECTOR``  — ``nexus-type==repository``.
        ``BLOBSTORE_SELECTOR``   — ``nexus-type==blobstore``.
        ``WATCH_RECONNECT_ENABLED`` — ``false``.
        ``WATCH_RECONNECT_MAX_BACKOFF_SECONDS`` — ``30``.
        ``HEALTH_PORT``          — ``8080``.
        ``NEXUS_URL``            — ``http://localhost:8081``.
        ``NEXUS_API_USER`` / ``NEXUS_API_PASSWORD`` — REST credentials.
        ``NEXUS_REQUEST_TIMEOUT_SECONDS`` — ``30``.

    The namespace and password fallbacks (``KUBERNETES_NAMESPACE``,
    ``NEXUS_PASSWORD``) are read later, at the point of use.
    """
    values = env if env is not None else os.environ

    namespace_file = values.get("NAMESPACE_FILE", DEFAULT_NAMESPACE_FILE).strip()
    if not namespace_file:
        raise ConfigError("NAMESPACE_FILE must be a non-empty path")

    secret_name = values.get("NEXUS_SECRET_NAME", "nexus").strip()
    if not secret_name:
        raise ConfigError("NEXUS_SECRET_NAME must be a non-empty string")

    nexus_url = values.get("NEXUS_URL", "http://localhost:8081").strip().rstrip("/")
    if not nexus_url.startswith(("http://", "https://")):
        raise ConfigError(f"NEXUS_URL must be an http(s) URL, got: {nexus_url!r}")

    return SyncConfig(
        namespace_file=namespace_file,
        secret_name=secret_name,
        repository_selector=_selector(values, "REPOSITORY_SELECTOR", "nexus-type==repository"),
        blobstore_selector=_selector(values, "BLOBSTORE_SELECTOR", "nexus-type==blobstore"),
        watch_reconnect=parse_bool(values.get("WATCH_RECONNECT_ENABLED")),
        reconnect_max_backoff_seconds=env_int(
            "WATCH_RECONNECT_MAX_BACKOFF_SECONDS", 30, minimum=1, env=values
        ),
        health_port=env_int("HEALTH_PORT", 8080, minimum=0, maximum=65535, env=values),
        nexus_url=nexus_url,
        nexus_api_user=values.get("NEXUS_API_USER", ADMIN_ACCOUNT),
        nexus_api_password=values.get("NEXUS_API_PASSWORD", DEFAULT_PASSWORD),
        nexus_request_timeout_seconds=env_int(
            "NEXUS_REQUEST_TIMEOUT_SECONDS", 30, minimum=1, env=values
        ),
    )

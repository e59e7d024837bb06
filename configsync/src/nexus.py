from __future__ import annotations

import logging
import threading
from typing import Any

import requests
import yaml

from configsync.src.resources import AccountNotFoundError, resource_name

LOGGER = logging.getLogger(__name__)

REST_PREFIX = "/service/rest/v1"


# Fields that name the target resource and its REST route; never YAML-typed.
RAW_FIELDS = frozenset({"name", "format", "type"})
_BOOLEAN_LITERALS = frozenset({"true", "false"})


def parse_config_data(raw_data: dict[str, Any] | None) -> dict[str, Any]:
    """Turn ConfigMap ``data`` strings into typed JSON values.

    ``name``, ``format`` and ``type`` are copied verbatim.  Other values are
    parsed as YAML, so ``"true"`` becomes a boolean, ``"10"`` an integer and
    an indented block a nested object.  A scalar is only typed when YAML reads
    it back unchanged; ``"no"``, ``"0755"`` and ``"1.10"`` stay strings, as do
    values that are not valid YAML.
    """
    parsed: dict[str, Any] = {}
    for key, value in (raw_data or {}).items():
        if not isinstance(key, str):
            continue
        if value is None:
            parsed[key] = None
        elif key in RAW_FIELDS:
            parsed[key] = str(value)
        else:
            parsed[key] = _typed_value(str(value))
    return parsed


def _typed_value(raw: str) -> Any:
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if isinstance(value, bool):
        return value if raw.strip().lower() in _BOOLEAN_LITERALS else raw
    if isinstance(value, (int, float)):
        return value if str(value) == raw.strip() else raw
    if isinstance(value, (dict, list)):
        return value
    return raw


class NexusClient:
    """Nexus Repository Manager 3 REST client used as the host capabilities.

    Implements ``SecurityUpdater`` (admin password) and ``ConfigReconciler``
    (blob stores and repositories).  Every ``ensure`` is an upsert: the
    resource is created when absent and replaced when present, so applying
    the same ConfigMap twice is harmless.

    The ``requests.Session`` is shared by both watcher threads, so all calls
    go through ``_lock``.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout_seconds: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.headers.setdefault("Accept", "application/json")
        self._lock = threading.Lock()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{REST_PREFIX}{path}"
        with self._lock:
            return self.session.request(method, url, timeout=self.timeout_seconds, **kwargs)

    def change_password(self, account: str, value: str) -> None:
        response = self._request(
            "PUT",
            f"/security/users/{account}/change-password",
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )
        if response.status_code == 404:
            raise AccountNotFoundError(account)
        response.raise_for_status()
        if account == self.username:
            with self._lock:
                self.session.auth = (account, value)

    def blob_store_exists(self, name: str) -> bool:
        response = self._request("GET", "/blobstores")
        response.raise_for_status()
        return any(store.get("name") == name for store in response.json() or [])

    def repository_exists(self, name: str) -> bool:
        response = self._request("GET", f"/repositories/{name}")
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    def ensure_blob_store(self, config_map: Any) -> str:
        """Create or update the blob store described by *config_map*; return its name."""
        body = parse_config_data(getattr(config_map, "data", None))
        store_type = str(body.pop("type", None) or "file").lower()
        name = _resource_name(body, config_map)
        body["name"] = name

        if self.blob_store_exists(name):
            response = self._request("PUT", f"/blobstores/{store_type}/{name}", json=body)
            verb = "Updated"
        else:
            response = self._request("POST", f"/blobstores/{store_type}", json=body)
            verb = "Created"
        response.raise_for_status()
        LOGGER.info("%s %s blob store %s", verb, store_type, name)
        return name

    def ensure_repository(self, config_map: Any) -> str:
        """Create or update the repository described by *config_map*; return its name."""
        body = parse_config_data(getattr(config_map, "data", None))
        repo_format = body.pop("format", None)
        repo_type = body.pop("type", None)
        if not repo_format or not repo_type:
            raise ValueError(
                f"Repository ConfigMap {resource_name(config_map)} must define "
                "'format' and 'type'"
            )
        repo_format = str(repo_format).lower()
        repo_type = str(repo_type).lower()
        name = _resource_name(body, config_map)
        body["name"] = name
        body.setdefault("online", True)

        if self.repository_exists(name):
            response = self._request(
                "PUT", f"/repositories/{repo_format}/{repo_type}/{name}", json=body
            )
            verb = "Updated"
        else:
            response = self._request("POST", f"/repositories/{repo_format}/{repo_type}", json=body)
            verb = "Created"
        response.raise_for_status()
        LOGGER.info("%s %s-%s repository %s", verb, repo_format, repo_type, name)
        return name

    def on_repository_config(self, config_map: Any) -> None:
        self.ensure_repository(config_map)

    def on_blobstore_config(self, config_map: Any) -> None:
        self.ensure_blob_store(config_map)


def _resource_name(body: dict[str, Any], config_map: Any) -> str:
    name = body.get("name") or getattr(getattr(config_map, "metadata", None), "name", None)
    if not name:
        raise ValueError("ConfigMap has neither a 'name' field nor metadata.name")
    return str(name)

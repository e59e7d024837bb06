from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from configsync.src.config import DEFAULT_NAMESPACE_FILE, NAMESPACE_ENV_VAR

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamespaceResolution:
    namespace: str
    source: str


def resolve_namespace(
    path: str | os.PathLike[str] = DEFAULT_NAMESPACE_FILE,
    env: Mapping[str, str] | None = None,
) -> NamespaceResolution | None:
    """Determine the namespace to watch.

    Resolution order:
    1. The mounted service-account file, UTF-8 decoded and trimmed.
    2. ``KUBERNETES_NAMESPACE`` when the file is missing, unreadable or empty.
    3. ``None`` — the caller must not build a cluster client.

    Runs once at startup; there is no retry.
    """
    values = env if env is not None else os.environ
    namespace_path = Path(path)

    try:
        namespace = namespace_path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("Unable to read namespace from %s: %s", namespace_path, exc)
    else:
        if namespace:
            LOGGER.info("Detected namespace %s from %s", namespace, namespace_path)
            return NamespaceResolution(namespace=namespace, source="file")
        LOGGER.warning("Namespace file %s is empty", namespace_path)

    namespace = (values.get(NAMESPACE_ENV_VAR) or "").strip()
    if namespace:
        LOGGER.info("Detected namespace %s from %s", namespace, NAMESPACE_ENV_VAR)
        return NamespaceResolution(namespace=namespace, source="env")

    LOGGER.warning(
        "Unable to read namespace from environment variable %s", NAMESPACE_ENV_VAR
    )
    return None

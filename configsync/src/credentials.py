from __future__ import annotations

import enum
import logging
import os
from collections.abc import Mapping

from kubernetes.client import CoreV1Api

from configsync.src.config import (
    ADMIN_ACCOUNT,
    DEFAULT_PASSWORD,
    PASSWORD_ENV_VAR,
    PASSWORD_FIELD,
)
from configsync.src.kube import read_secret
from configsync.src.metrics import METRICS
from configsync.src.resources import AccountNotFoundError, SecurityUpdater

LOGGER = logging.getLogger(__name__)


class CredentialOutcome(enum.Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    ACCOUNT_NOT_FOUND = "account_not_found"
    FAILED = "failed"


def resolve_password(
    material: Mapping[str, bytes] | None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Derive the admin password.

    Precedence: the ``password`` field of the credential material, then the
    ``NEXUS_PASSWORD`` environment variable, then the ``admin123`` default.
    """
    values = env if env is not None else os.environ
    if material is not None and PASSWORD_FIELD in material:
        return material[PASSWORD_FIELD].decode("utf-8")
    fallback = values.get(PASSWORD_ENV_VAR)
    if fallback is not None:
        return fallback
    return DEFAULT_PASSWORD


def bootstrap_credential(
    core_api: CoreV1Api,
    namespace: str,
    security: SecurityUpdater,
    secret_name: str = "nexus",
    env: Mapping[str, str] | None = None,
) -> CredentialOutcome:
    """Seed the admin password from the named Secret, once, at startup.

    A missing Secret is reported as ``SKIPPED``.  Every failure is logged as
    a warning and reported through the outcome; nothing is raised, so this
    step can never abort startup.  The material is not retained.
    """
    outcome = _bootstrap_credential(core_api, namespace, security, secret_name, env)
    METRICS.credential_bootstrap_total.labels(outcome=outcome.value).inc()
    return outcome


def _bootstrap_credential(
    core_api: CoreV1Api,
    namespace: str,
    security: SecurityUpdater,
    secret_name: str,
    env: Mapping[str, str] | None,
) -> CredentialOutcome:
    try:
        material = read_secret(core_api, namespace, secret_name)
        if material is None:
            LOGGER.info(
                "Unable to retrieve secret %r from namespace %s; leaving admin password unchanged",
                secret_name,
                namespace,
            )
            return CredentialOutcome.SKIPPED

        LOGGER.debug("Secret %r provides fields: %s", secret_name, ", ".join(sorted(material)))
        password = resolve_password(material, env)
        security.change_password(ADMIN_ACCOUNT, password)
    except AccountNotFoundError:
        LOGGER.warning(
            "User %r not found, unable to set password", ADMIN_ACCOUNT, exc_info=True
        )
        return CredentialOutcome.ACCOUNT_NOT_FOUND
    except Exception:
        LOGGER.warning(
            "An error occurred while setting the admin password from secret %r",
            secret_name,
            exc_info=True,
        )
        return CredentialOutcome.FAILED

    LOGGER.info("Admin password successfully set from secret %r", secret_name)
    return CredentialOutcome.APPLIED

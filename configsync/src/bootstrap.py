from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from kubernetes.client import ApiException, CoreV1Api

from configsync.src.kube import list_config_maps
from configsync.src.metrics import METRICS
from configsync.src.resources import ResourceCategory, resource_name

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapResult:
    """Outcome of the initial list-and-apply pass for one category.

    ``list_failed`` is set when the list call itself failed; in that case
    ``listed`` is zero and the category was skipped for this pass.
    """

    category: str
    listed: int
    reconciled: int
    failed: int
    list_failed: bool = False


def reconcile_category(
    core_api: CoreV1Api, namespace: str, category: ResourceCategory
) -> BootstrapResult:
    """List one category and apply its callback to every item, in list order.

    A failing callback is logged and counted; the remaining items are still
    applied.
    """
    try:
        config_maps = list_config_maps(core_api, namespace, category.selector)
    except ApiException as exc:
        LOGGER.error(
            "Error reading %s ConfigMaps (selector=%s, status=%s): %s",
            category.name,
            category.selector,
            exc.status,
            exc.reason,
        )
        METRICS.list_errors_total.labels(category=category.name).inc()
        return BootstrapResult(
            category=category.name, listed=0, reconciled=0, failed=0, list_failed=True
        )
    except Exception:
        LOGGER.exception("Unexpected error listing %s ConfigMaps", category.name)
        METRICS.list_errors_total.labels(category=category.name).inc()
        return BootstrapResult(
            category=category.name, listed=0, reconciled=0, failed=0, list_failed=True
        )

    reconciled = 0
    failed = 0
    for config_map in config_maps:
        try:
            category.callback(config_map)
        except Exception:
            failed += 1
            LOGGER.exception(
                "Failed to apply %s ConfigMap %s", category.name, resource_name(config_map)
            )
            METRICS.reconcile_errors_total.labels(category=category.name).inc()
            continue
        reconciled += 1
        METRICS.reconciled_total.labels(category=category.name, origin="bootstrap").inc()

    LOGGER.info(
        "Bootstrapped %d/%d %s ConfigMap(s) in namespace %s",
        reconciled,
        len(config_maps),
        category.name,
        namespace,
    )
    return BootstrapResult(
        category=category.name,
        listed=len(config_maps),
        reconciled=reconciled,
        failed=failed,
    )


def reconcile_once(
    core_api: CoreV1Api, namespace: str, categories: Iterable[ResourceCategory]
) -> list[BootstrapResult]:
    """Run one blocking bootstrap pass over every category.

    Categories are independent: a list failure in one never prevents the
    others from being reconciled.  Must complete before any watch starts.
    """
    return [reconcile_category(core_api, namespace, category) for category in categories]

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol


class AccountNotFoundError(LookupError):
    """Raised by a :class:`SecurityUpdater` when the target account does not exist."""


class ConfigReconciler(Protocol):
    """Host capability that turns labeled ConfigMaps into local resources.

    Both methods are invoked from the bootstrap pass on the control thread
    and from two independent watcher threads (one per category), possibly at
    the same time.  Implementations must therefore be safe under concurrent
    invocation and idempotent for identical ConfigMap content, because the
    bootstrap list and a watch may deliver the same object twice.
    """

    def on_repository_config(self, config_map: Any) -> None: ...

    def on_blobstore_config(self, config_map: Any) -> None: ...


class SecurityUpdater(Protocol):
    def change_password(self, account: str, value: str) -> None: ...


class EventType(enum.Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ReconcileAction(enum.Enum):
    ENSURE = "ensure"


# DELETED deliberately maps to ENSURE: a deleted ConfigMap is re-applied,
# never torn down.
EVENT_ACTIONS: dict[EventType, ReconcileAction] = {
    EventType.ADDED: ReconcileAction.ENSURE,
    EventType.MODIFIED: ReconcileAction.ENSURE,
    EventType.DELETED: ReconcileAction.ENSURE,
}


@dataclass(frozen=True)
class WatchEvent:
    """One change notification from a watch stream.

    ``resource`` is the ConfigMap snapshot at the time of the event.
    """

    type: EventType
    resource: Any

    @property
    def action(self) -> ReconcileAction:
        return EVENT_ACTIONS[self.type]


@dataclass(frozen=True)
class LabelSelector:
    """Equality-based label selector (``k==v`` or ``k=v`` clauses joined by ``,``)."""

    clauses: tuple[tuple[str, str], ...]

    @classmethod
    def parse(cls, text: str) -> LabelSelector:
        clauses: dict[str, str] = {}
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            if "==" in part:
                key, value = part.split("==", 1)
            elif "=" in part:
                key, value = part.split("=", 1)
            else:
                raise ValueError(f"Unsupported label selector clause: {part!r}")
            key = key.strip()
            if key.endswith("!"):
                raise ValueError(f"Only equality clauses are supported: {part!r}")
            if not key:
                raise ValueError(f"Label selector clause has an empty key: {part!r}")
            clauses[key] = value.strip()
        if not clauses:
            raise ValueError(f"Label selector must contain at least one clause, got: {text!r}")
        return cls(clauses=tuple(sorted(clauses.items())))

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(labels.get(key) == value for key, value in self.clauses)

    def render(self) -> str:
        return ",".join(f"{key}=={value}" for key, value in self.clauses)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class ResourceCategory:
    """A managed category of ConfigMaps: its selector and the callback that applies them.

    The same selector is used for the bootstrap list and the watch, so both
    always see the same resource set.
    """

    name: str
    selector: LabelSelector
    callback: Callable[[Any], None]


def build_categories(
    reconciler: ConfigReconciler,
    repository_selector: LabelSelector,
    blobstore_selector: LabelSelector,
) -> tuple[ResourceCategory, ResourceCategory]:
    """Return the blobstore and repository categories, in bootstrap order.

    Blob stores come first because repository configs reference them by name.
    """
    return (
        ResourceCategory(
            name="blobstore",
            selector=blobstore_selector,
            callback=reconciler.on_blobstore_config,
        ),
        ResourceCategory(
            name="repository",
            selector=repository_selector,
            callback=reconciler.on_repository_config,
        ),
    )


def resource_name(config_map: Any) -> str:
    """Return ``namespace/name`` for log messages, tolerating partial objects."""
    metadata = getattr(config_map, "metadata", None)
    name = getattr(metadata, "name", None) or "<unknown>"
    namespace = getattr(metadata, "namespace", None)
    return f"{namespace}/{name}" if namespace else name

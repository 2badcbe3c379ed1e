"""Record store collaborator and allow-listed update targets.

Workflows never name tables or columns directly. update_record actions refer to
an UpdateTarget by name; the target fixes the collection, the key field and the
fields that may be written.
"""

from __future__ import annotations

import copy
import itertools
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..core.config import UpdateTargetConfig
from ..core.logger import get_logger

logger = get_logger("services.records")


class RecordStore(ABC):
    """Generic record storage used by create_task and update_record actions."""

    @abstractmethod
    def insert(self, collection: str, data: Mapping[str, Any]) -> Any:
        """Insert a record and return its id."""

    @abstractmethod
    def update(
        self,
        collection: str,
        key_field: str,
        key: Any,
        data: Mapping[str, Any],
    ) -> int:
        """Update records whose ``key_field`` equals ``key``; return the affected count."""

    @abstractmethod
    def find(self, collection: str, key_field: str, key: Any) -> list[dict[str, Any]]:
        """Return records whose ``key_field`` equals ``key``."""


class InMemoryRecordStore(RecordStore):
    """Thread-safe in-process record store."""

    def __init__(self) -> None:
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def insert(self, collection: str, data: Mapping[str, Any]) -> int:
        with self._lock:
            record_id = next(self._ids)
            record = {**copy.deepcopy(dict(data)), "id": record_id}
            self._collections.setdefault(collection, []).append(record)
        logger.debug("Inserted record %s into %s", record_id, collection)
        return record_id

    def update(
        self,
        collection: str,
        key_field: str,
        key: Any,
        data: Mapping[str, Any],
    ) -> int:
        affected = 0
        with self._lock:
            for record in self._collections.get(collection, []):
                if record.get(key_field) == key:
                    record.update(copy.deepcopy(dict(data)))
                    affected += 1
        logger.debug("Updated %d record(s) in %s where %s=%r", affected, collection, key_field, key)
        return affected

    def find(self, collection: str, key_field: str, key: Any) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._collections.get(collection, [])
                if record.get(key_field) == key
            ]

    def all(self, collection: str) -> list[dict[str, Any]]:
        """Return every record in a collection."""
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, []))


@dataclass(frozen=True)
class UpdateTarget:
    """A named, pre-defined destination for update_record actions."""

    name: str
    collection: str
    allowed_fields: frozenset[str]
    key_field: str = "id"

    @classmethod
    def from_config(cls, config: UpdateTargetConfig) -> UpdateTarget:
        return cls(
            name=config.name,
            collection=config.collection,
            allowed_fields=frozenset(config.allowed_fields),
            key_field=config.key_field,
        )

    def disallowed(self, fields: Iterable[str]) -> list[str]:
        """Fields not on this target's allow-list."""
        return sorted(set(fields) - self.allowed_fields)


class UpdateTargetRegistry:
    """Allow-list of update targets keyed by name."""

    def __init__(self, targets: Iterable[UpdateTarget] | None = None) -> None:
        self._targets: dict[str, UpdateTarget] = {}
        for target in targets or []:
            self.register(target)

    @classmethod
    def from_config(cls, configs: Iterable[UpdateTargetConfig]) -> UpdateTargetRegistry:
        return cls(UpdateTarget.from_config(config) for config in configs)

    def register(self, target: UpdateTarget) -> None:
        if target.name in self._targets:
            raise ValueError(f"Update target already registered: {target.name}")
        self._targets[target.name] = target

    def get(self, name: str) -> UpdateTarget | None:
        return self._targets.get(name)

    def names(self) -> list[str]:
        return sorted(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

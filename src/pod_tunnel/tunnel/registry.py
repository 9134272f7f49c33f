"""Tunnel registry persisted across process invocations.

The registry is the only state that survives between independent command
runs. It is loaded once when a manager starts and every mutation rewrites
the whole store (write-through). There is no cross-process lock: two
processes mutating the same file concurrently can lose each other's last
write.
"""

import copy
import json
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from ..common.exceptions import RegistryError
from ..common.locks import ReadWriteLock
from ..common.logging import get_logger
from .models import TunnelRecord, tunnel_id

logger = get_logger(__name__)

# Key used by registry files written by older releases
_LEGACY_WRAPPER_KEY = "tunnels"


class RegistryStore(Protocol):
    """Durable form of the registry: a mapping of tunnel id to record data."""

    def load(self) -> dict[str, Any]: ...

    def save(self, data: dict[str, Any]) -> None: ...


class JsonFileStore:
    """Registry store backed by a single JSON file."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, Any]:
        """Read the file; a missing file is an empty registry.

        Raises:
            RegistryError: If the file cannot be read or is not a JSON object
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise RegistryError(f"failed to read tunnel registry {self.path}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RegistryError(
                f"failed to parse tunnel registry {self.path}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise RegistryError(
                f"failed to parse tunnel registry {self.path}: expected a JSON object"
            )
        return data

    def save(self, data: dict[str, Any]) -> None:
        """Overwrite the file with the full registry.

        Raises:
            RegistryError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise RegistryError(
                f"failed to write tunnel registry {self.path}: {e}"
            ) from e


class MemoryStore:
    """Registry store kept in memory, for tests and embedding."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = copy.deepcopy(data) if data else {}
        self.saves = 0

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def save(self, data: dict[str, Any]) -> None:
        self.data = copy.deepcopy(data)
        self.saves += 1


class TunnelRegistry:
    """Collection of active tunnel records keyed by tunnel id."""

    def __init__(self, store: RegistryStore):
        """Initialize an empty registry over ``store``; call load() to read it.

        Args:
            store: Durable storage for the registry
        """
        self.store = store
        self._tunnels: dict[str, TunnelRecord] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def open(cls, store: RegistryStore) -> "TunnelRegistry":
        """Create a registry over ``store`` and load it."""
        registry = cls(store)
        registry.load()
        return registry

    def load(self) -> None:
        """Replace the in-memory registry with the persisted one.

        Raises:
            RegistryError: If the persisted data is malformed
        """
        data = self.store.load()
        if (
            set(data) == {_LEGACY_WRAPPER_KEY}
            and isinstance(data[_LEGACY_WRAPPER_KEY], dict)
        ):
            data = data[_LEGACY_WRAPPER_KEY]

        tunnels: dict[str, TunnelRecord] = {}
        for key, value in data.items():
            try:
                record = TunnelRecord.model_validate(value)
            except PydanticValidationError as e:
                raise RegistryError(f"invalid tunnel record '{key}': {e}") from e
            if record.id != key:
                raise RegistryError(
                    f"invalid tunnel record '{key}': id is '{record.id}'"
                )
            tunnels[key] = record

        with self._lock.write_lock():
            self._tunnels = tunnels
        logger.debug("Loaded tunnel registry", count=len(tunnels))

    def _save(self) -> None:
        # Caller holds the write lock
        self.store.save(
            {key: record.to_json_dict() for key, record in self._tunnels.items()}
        )

    def save(self) -> None:
        """Persist the full registry."""
        with self._lock.write_lock():
            self._save()

    def add(self, record: TunnelRecord) -> None:
        """Insert or overwrite a record by id, then persist.

        The in-memory view is rolled back if the store rejects the write.
        """
        with self._lock.write_lock():
            previous = self._tunnels.get(record.id)
            self._tunnels[record.id] = record
            try:
                self._save()
            except BaseException:
                if previous is None:
                    del self._tunnels[record.id]
                else:
                    self._tunnels[record.id] = previous
                raise
        logger.info("Added tunnel to registry", tunnel_id=record.id)

    def remove(self, tunnel_id: str) -> TunnelRecord | None:
        """Delete a record if present, then persist.

        Returns:
            The removed record, or None when there was none
        """
        with self._lock.write_lock():
            record = self._tunnels.pop(tunnel_id, None)
            self._save()
        if record is not None:
            logger.info("Removed tunnel from registry", tunnel_id=tunnel_id)
        return record

    def clear(self) -> None:
        """Remove every record, then persist."""
        with self._lock.write_lock():
            self._tunnels = {}
            self._save()
        logger.info("Cleared tunnel registry")

    def get(self, tunnel_id: str) -> TunnelRecord | None:
        with self._lock.read_lock():
            return self._tunnels.get(tunnel_id)

    def get_by_service_env(self, service: str, environment: str) -> TunnelRecord | None:
        return self.get(tunnel_id(service, environment))

    def list(self) -> list[TunnelRecord]:
        """All records, ordered by id."""
        with self._lock.read_lock():
            return [self._tunnels[key] for key in sorted(self._tunnels)]

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._tunnels)

    def __contains__(self, tunnel_id: object) -> bool:
        with self._lock.read_lock():
            return tunnel_id in self._tunnels

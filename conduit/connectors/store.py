"""
Connector Instance Store — workspace-scoped connector instances.

Holds ConnectorInstance records in memory and, when a path is configured,
persists them as JSON. Credentials are stored exactly as the vault
produced them (encrypted); the store never sees plaintext.
"""

from __future__ import annotations

import copy
import json
import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from conduit.connectors.base import ConnectorStatus
from conduit.connectors.models import ConnectorInstance

logger = logging.getLogger(__name__)

# Runtime connector objects never survive a restart
_RESET_ON_LOAD = (ConnectorStatus.CONNECTED, ConnectorStatus.CONNECTING)


class ConnectorInstanceStore:
    """Thread-safe instance store with optional JSON persistence.

    get() and the list methods return copies; call save() to write back
    a modified instance.
    """

    def __init__(self, path: Union[str, Path, None] = None, backup: bool = True) -> None:
        self._lock = threading.Lock()
        self._instances: Dict[str, ConnectorInstance] = {}
        self._path = Path(path) if path else None
        self._backup = backup
        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def add(self, instance: ConnectorInstance) -> None:
        """Insert a new instance.

        Raises:
            ValueError: If an instance with the same id already exists
        """
        with self._lock:
            if instance.id in self._instances:
                raise ValueError(f"Connector '{instance.id}' already exists")
            self._instances[instance.id] = copy.deepcopy(instance)
            try:
                self._save()
            except Exception:
                del self._instances[instance.id]
                raise

    def get(self, connector_id: str) -> Optional[ConnectorInstance]:
        with self._lock:
            instance = self._instances.get(connector_id)
            return copy.deepcopy(instance) if instance else None

    def save(self, instance: ConnectorInstance) -> None:
        """Replace the stored record for an existing instance.

        Raises:
            KeyError: If the instance is not in the store
        """
        with self._lock:
            if instance.id not in self._instances:
                raise KeyError(f"Connector '{instance.id}' not in store")
            previous = self._instances[instance.id]
            self._instances[instance.id] = copy.deepcopy(instance)
            try:
                self._save()
            except Exception:
                self._instances[instance.id] = previous
                raise

    def delete(self, connector_id: str) -> bool:
        """Delete an instance. Returns True if found and deleted."""
        with self._lock:
            if connector_id not in self._instances:
                return False
            previous = self._instances.pop(connector_id)
            try:
                self._save()
            except Exception:
                self._instances[connector_id] = previous
                raise
            return True

    def list_all(self) -> List[ConnectorInstance]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._instances.values()]

    def list_by_workspace(self, workspace_id: str) -> List[ConnectorInstance]:
        with self._lock:
            return [
                copy.deepcopy(i) for i in self._instances.values()
                if i.workspace_id == workspace_id
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    # ── Persistence ─────────────────────────────────────────────────

    def _save(self) -> None:
        """Write all instances to disk. Caller holds the lock."""
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)

        if self._backup and self._path.exists():
            shutil.copy2(self._path, self._path.with_name(self._path.name + ".bak"))

        data = {
            "version": 1,
            "connectors": [i.to_dict() for i in self._instances.values()],
        }
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self._path)

    def _load(self) -> None:
        """Load instances from disk if the file exists."""
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            instances = [ConnectorInstance.from_dict(d) for d in data.get("connectors", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load connector store %s: %s", self._path, e)
            return

        for instance in instances:
            if instance.status in _RESET_ON_LOAD:
                instance.status = ConnectorStatus.DISCONNECTED
            self._instances[instance.id] = instance
        logger.info("Loaded %d connector instance(s) from %s", len(instances), self._path)

"""
Integration Registry — catalog of installable integrations and their factories.

The registry is a static table populated at startup: each entry pairs an
immutable IntegrationDefinition with a factory that builds the connector.
Adding a plugin means registering a new (definition, factory) pair; the
lookup logic never changes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from conduit.connectors.base import ConnectorFactory
from conduit.connectors.errors import UnknownIntegrationError
from conduit.connectors.models import IntegrationDefinition

logger = logging.getLogger(__name__)


# ── Registry Entry ─────────────────────────────────────────────────

@dataclass(frozen=True)
class RegistryEntry:
    """A registered integration with its connector factory."""
    definition: IntegrationDefinition
    factory: ConnectorFactory
    registered_at: str


# ── Integration Registry ──────────────────────────────────────────

class IntegrationRegistry:
    """Central catalog for integration definitions.

    Lookups are pure reads over the catalog; registration is expected
    at startup but is thread-safe.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, RegistryEntry] = {}

    def register(
        self,
        definition: IntegrationDefinition,
        factory: ConnectorFactory,
    ) -> RegistryEntry:
        """Register an integration. Validates the definition.

        Raises:
            ValueError: If the definition is invalid or already registered
            TypeError: If ``factory`` is not callable
        """
        definition.validate()
        if not callable(factory):
            raise TypeError(f"Factory for '{definition.id}' must be callable")

        with self._lock:
            if definition.id in self._entries:
                raise ValueError(f"Integration '{definition.id}' is already registered")
            entry = RegistryEntry(
                definition=definition,
                factory=factory,
                registered_at=datetime.now(timezone.utc).isoformat(),
            )
            self._entries[definition.id] = entry

        logger.info("Integration registered: %s (%s)", definition.name, definition.id)
        return entry

    def unregister(self, integration_id: str) -> bool:
        """Remove an integration. Returns True if found and removed."""
        with self._lock:
            return self._entries.pop(integration_id, None) is not None

    def get(self, integration_id: str) -> Optional[IntegrationDefinition]:
        """Get a definition by id, or None if not found."""
        with self._lock:
            entry = self._entries.get(integration_id)
        return entry.definition if entry else None

    def require(self, integration_id: str) -> IntegrationDefinition:
        """Get a definition by id. Raises UnknownIntegrationError if absent."""
        definition = self.get(integration_id)
        if definition is None:
            raise UnknownIntegrationError(integration_id)
        return definition

    def list_definitions(self) -> List[IntegrationDefinition]:
        """Return all definitions in registration order."""
        with self._lock:
            return [e.definition for e in self._entries.values()]

    def list_by_category(self, category: str) -> List[IntegrationDefinition]:
        """Return definitions in ``category`` (case-insensitive)."""
        wanted = category.lower()
        return [d for d in self.list_definitions() if d.category.lower() == wanted]

    def categories(self) -> List[str]:
        """Return the distinct categories, sorted."""
        return sorted({d.category for d in self.list_definitions()})

    def search(self, text: str) -> List[IntegrationDefinition]:
        """Case-insensitive substring search over name, description, features."""
        text = (text or "").strip()
        if not text:
            return self.list_definitions()
        return [d for d in self.list_definitions() if d.matches(text)]

    def resolve_implementation(self, integration_id: str) -> ConnectorFactory:
        """Return the connector factory for ``integration_id``.

        Raises:
            UnknownIntegrationError: If the id is not in the catalog
        """
        with self._lock:
            entry = self._entries.get(integration_id)
        if entry is None:
            raise UnknownIntegrationError(integration_id)
        return entry.factory

    def __contains__(self, integration_id: object) -> bool:
        with self._lock:
            return integration_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

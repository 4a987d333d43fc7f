"""
Connector Data Models.

Defines the data structures the framework stores and passes around:
- ParameterSpec: one declared field of a config, credentials or action schema
- IntegrationDefinition: immutable catalog entry in the registry
- ConnectorInstance: workspace-scoped, persisted handle to a connector
- ConnectionTestResult: outcome of a connection test
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from conduit.connectors.base import ConnectorStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ── Parameter Spec ─────────────────────────────────────────────────

PARAMETER_TYPES = ("str", "int", "float", "bool", "dict", "list", "list[str]", "list[int]", "any")


@dataclass(frozen=True)
class ParameterSpec:
    """Specification for a single schema field.

    Attributes:
        name: Field name
        type: Type hint string ("str", "int", "bool", "list[str]", ...)
        required: Whether the field must be provided
        description: Human-readable description
        default: Default value when not required
    """
    name: str
    type: str = "str"
    required: bool = True
    description: str = ""
    default: Any = None

    def validate(self) -> None:
        """Validate spec fields. Raises ValueError on invalid data."""
        if not self.name:
            raise ValueError("ParameterSpec.name must not be empty")
        if self.type not in PARAMETER_TYPES:
            raise ValueError(
                f"ParameterSpec.type must be one of {PARAMETER_TYPES}, got '{self.type}'"
            )


# ── Integration Definition ─────────────────────────────────────────

@dataclass(frozen=True)
class IntegrationDefinition:
    """Immutable catalog entry describing an installable integration.

    Attributes:
        id: Unique integration identifier (e.g., "slack")
        name: Display name
        category: Catalog category (e.g., "communication", "ai-models")
        capabilities: Capability labels ("actions", "triggers", ...)
        config_schema: Shape of non-secret settings
        credentials_schema: Shape of secrets
        description: Human-readable description, searched by the registry
        version: Semantic version string
        features: Feature labels, searched by the registry
    """
    id: str
    name: str
    category: str
    capabilities: Sequence[str] = field(default_factory=tuple)
    config_schema: Any = None
    credentials_schema: Any = None
    description: str = ""
    version: str = "1.0.0"
    features: Sequence[str] = field(default_factory=tuple)

    def validate(self) -> None:
        """Validate definition fields. Raises ValueError on invalid data."""
        if not self.id:
            raise ValueError("IntegrationDefinition.id must not be empty")
        if not self.name:
            raise ValueError("IntegrationDefinition.name must not be empty")
        if not self.category:
            raise ValueError("IntegrationDefinition.category must not be empty")

    def matches(self, text: str) -> bool:
        """Case-insensitive substring match on name, description and features."""
        needle = text.lower()
        return (
            needle in self.name.lower()
            or needle in self.description.lower()
            or any(needle in f.lower() for f in self.features)
        )

    def to_dict(self) -> Dict[str, Any]:
        from conduit.connectors.schema import describe_schema  # noqa: avoid circular

        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "version": self.version,
            "capabilities": list(self.capabilities),
            "features": list(self.features),
            "config_schema": describe_schema(self.config_schema),
            "credentials_schema": describe_schema(self.credentials_schema),
        }


# ── Connector Instance ─────────────────────────────────────────────

@dataclass
class ConnectorInstance:
    """A configured, workspace-scoped connector.

    ``credentials`` always holds the vault-encrypted blob, never the map.
    """
    id: str
    integration_id: str
    workspace_id: str
    name: str
    config: Dict[str, Any]
    credentials: str
    status: ConnectorStatus = ConnectorStatus.DISCONNECTED
    last_tested: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self, include_credentials: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "integration_id": self.integration_id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "config": dict(self.config),
            "status": self.status.value,
            "last_tested": _iso(self.last_tested),
            "last_error": self.last_error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_credentials:
            data["credentials"] = self.credentials
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ConnectorInstance:
        return cls(
            id=data["id"],
            integration_id=data["integration_id"],
            workspace_id=data["workspace_id"],
            name=data["name"],
            config=dict(data.get("config") or {}),
            credentials=data["credentials"],
            status=ConnectorStatus(data.get("status", ConnectorStatus.DISCONNECTED.value)),
            last_tested=_parse_iso(data.get("last_tested")),
            last_error=data.get("last_error"),
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
            updated_at=_parse_iso(data.get("updated_at")) or utcnow(),
        )


# ── Connection Test Result ─────────────────────────────────────────

@dataclass
class ConnectionTestResult:
    """Outcome of IntegrationManager.test_connector()."""
    success: bool
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "details": self.details}
"""
Connector Errors — the exception taxonomy shared by the connector framework.

Reference errors (unknown integration, unknown action, unknown instance)
also derive from LookupError so callers can treat them generically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class ConduitError(Exception):
    """Base class for every error raised by the connector framework."""


# ── Validation ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldError:
    """A single violated field.

    The rejected input value is deliberately absent: credential maps go
    through the same validator.
    """
    field: str
    message: str
    type: str = "value_error"

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "type": self.type}


class ValidationError(ConduitError):
    """Config, credentials or action params do not satisfy their schema."""

    def __init__(self, errors: List[FieldError], context: str = "") -> None:
        self.errors = list(errors)
        self.context = context
        fields = ", ".join(f"{e.field}: {e.message}" for e in self.errors)
        prefix = f"{context} validation failed" if context else "Validation failed"
        super().__init__(f"{prefix} ({len(self.errors)} error(s)): {fields}")

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.errors]

    def prefixed(self, prefix: str) -> "ValidationError":
        """Return a copy with every field path prefixed by ``prefix.``."""
        return ValidationError(
            [FieldError(f"{prefix}.{e.field}", e.message, e.type) for e in self.errors],
            context=self.context,
        )


# ── Bad references ─────────────────────────────────────────────────

class UnknownIntegrationError(ConduitError, LookupError):
    """The integration id is not in the registry catalog."""

    def __init__(self, integration_id: str) -> None:
        self.integration_id = integration_id
        super().__init__(f"Integration '{integration_id}' not found")


class UnknownActionError(ConduitError, LookupError):
    """The connector does not expose the requested action."""

    def __init__(self, action_id: str, connector_id: str = "") -> None:
        self.action_id = action_id
        self.connector_id = connector_id
        where = f" on connector '{connector_id}'" if connector_id else ""
        super().__init__(f"Action '{action_id}' not found{where}")


class NotFoundError(ConduitError, LookupError):
    """No connector instance with that id."""

    def __init__(self, connector_id: str) -> None:
        self.connector_id = connector_id
        super().__init__(f"Connector '{connector_id}' not found")


# ── Lifecycle ──────────────────────────────────────────────────────

class ConnectorConnectionError(ConduitError):
    """A plugin could not be constructed or its initialize() failed."""

    def __init__(self, message: str, connector_id: str = "") -> None:
        self.connector_id = connector_id
        super().__init__(message)


class NotConnectedError(ConduitError):
    """An action was attempted on an instance that is not connected."""

    def __init__(self, connector_id: str, status: str = "") -> None:
        self.connector_id = connector_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Connector '{connector_id}' is not connected{detail}")


class InvalidTransitionError(ConduitError):
    """A status change not allowed by the connector state machine."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current} -> {target}")


class DecryptionError(ConduitError):
    """A credential blob is malformed or was encrypted under another key."""


class ExecutionError(ConduitError):
    """A plugin action raised. Wraps and keeps the original message."""

    def __init__(
        self,
        action_id: str,
        message: str,
        connector_id: str = "",
        original: Optional[BaseException] = None,
    ) -> None:
        self.action_id = action_id
        self.connector_id = connector_id
        self.original_message = message
        self.original = original
        super().__init__(f"Action '{action_id}' failed: {message}")

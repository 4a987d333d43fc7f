"""
Connector Contract — the structural interface every plugin implements.

Plugins do not inherit from a shared base class. Anything that provides
initialize / get_actions / test_connection / get_capabilities satisfies
the Connector protocol and can be registered with a factory.

Also defines the connector status machine, ConnectorAction,
ConnectorCapabilities and ExecutionContext.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from conduit.connectors.errors import InvalidTransitionError


# ── Connector Status ───────────────────────────────────────────────

class ConnectorStatus(str, Enum):
    """Lifecycle status of a connector instance."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"

    def can_transition_to(self, target: "ConnectorStatus") -> bool:
        return target in _TRANSITIONS[self]

    def check_transition(self, target: "ConnectorStatus") -> None:
        """Raise InvalidTransitionError unless ``self -> target`` is allowed."""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.value, target.value)


_TRANSITIONS: Dict[ConnectorStatus, FrozenSet[ConnectorStatus]] = {
    ConnectorStatus.DISCONNECTED: frozenset({ConnectorStatus.CONNECTING}),
    ConnectorStatus.CONNECTING: frozenset({ConnectorStatus.CONNECTED, ConnectorStatus.ERROR}),
    ConnectorStatus.CONNECTED: frozenset({ConnectorStatus.DISCONNECTED, ConnectorStatus.ERROR}),
    ConnectorStatus.ERROR: frozenset({ConnectorStatus.CONNECTING, ConnectorStatus.DISCONNECTED}),
}


# ── Execution Context ──────────────────────────────────────────────

@dataclass(frozen=True)
class ExecutionContext:
    """Per-invocation values passed through to an action handler.

    Not persisted by the framework; a plugin may log it.
    """
    workflow_id: Optional[str] = None
    execution_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None
    variables: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "variables": dict(self.variables),
        }


# ── Connector Action ───────────────────────────────────────────────

ActionHandler = Callable[[Dict[str, Any], ExecutionContext], Any]


@dataclass(frozen=True)
class ConnectorAction:
    """A named, schema-described unit of work exposed by a connector.

    Attributes:
        id: Action identifier used by callers (e.g., "send_message")
        name: Human-readable name
        handler: Called as handler(params, context) with already-validated params
        description: What this action does
        schema: pydantic model class, sequence of ParameterSpec, or None
            for an action that takes no parameters
    """
    id: str
    name: str
    handler: ActionHandler
    description: str = ""
    schema: Any = None

    def execute(self, params: Dict[str, Any], context: ExecutionContext) -> Any:
        return self.handler(params, context)

    def describe(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "description": self.description}


# ── Capabilities ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ConnectorCapabilities:
    """Informational capability descriptor. Not enforced by the manager."""
    supports_batch: bool = False
    supports_streaming: bool = False
    supports_files: bool = False
    max_concurrency: Optional[int] = None
    rate_limits: Mapping[str, Any] = field(default_factory=dict)
    operations: Sequence[str] = field(default_factory=tuple)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "supports_batch": self.supports_batch,
            "supports_streaming": self.supports_streaming,
            "supports_files": self.supports_files,
            "max_concurrency": self.max_concurrency,
            "rate_limits": dict(self.rate_limits),
            "operations": list(self.operations),
        }
        data.update(self.extra)
        return data


# ── Connector Protocol ─────────────────────────────────────────────

@runtime_checkable
class Connector(Protocol):
    """The contract every plugin satisfies.

    - initialize(): set up plugin resources; raise ConnectorConnectionError
      if the endpoint is unreachable or the credentials are rejected
    - get_actions(): the actions this connector exposes, in a stable order
    - test_connection(): True/False, never raises
    - get_capabilities(): informational descriptor

    A plugin may also define close(); the manager calls it best-effort
    when releasing the connector.
    """

    def initialize(self) -> None:
        ...

    def get_actions(self) -> List[ConnectorAction]:
        ...

    def test_connection(self) -> bool:
        ...

    def get_capabilities(self) -> ConnectorCapabilities:
        ...


ConnectorFactory = Callable[[Dict[str, Any], Dict[str, Any]], Connector]


def find_action(connector: Connector, action_id: str) -> Optional[ConnectorAction]:
    """Return the action with ``action_id`` or None."""
    for action in connector.get_actions():
        if action.id == action_id:
            return action
    return None


def close_connector(connector: Any) -> None:
    """Call the plugin's close() hook if it has one."""
    close = getattr(connector, "close", None)
    if callable(close):
        close()

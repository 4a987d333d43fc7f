"""
Echo Connector — integration testing connector with no remote endpoint.

Used for end-to-end testing of the connector pipeline. Needs a token
credential so the credential path is exercised, but never sends it anywhere.
"""

from __future__ import annotations

from typing import Any, Dict, List

from conduit.connectors.base import ConnectorAction, ConnectorCapabilities, ExecutionContext
from conduit.connectors.errors import ConnectorConnectionError
from conduit.connectors.models import IntegrationDefinition, ParameterSpec


ECHO_DEFINITION = IntegrationDefinition(
    id="echo",
    name="Echo",
    category="utilities",
    description="Test connector that echoes its input back",
    capabilities=("actions",),
    features=("Ping", "Echo"),
    config_schema=[],
    credentials_schema=[ParameterSpec(name="token", type="str", description="Any non-empty token")],
)


class EchoConnector:
    """Connector that answers locally."""

    def __init__(self, config: Dict[str, Any], credentials: Dict[str, Any]) -> None:
        self._config = config
        self._token = credentials.get("token", "")
        self._initialized = False

    def initialize(self) -> None:
        if not self._token:
            raise ConnectorConnectionError("Echo connector rejected an empty token", "echo")
        self._initialized = True

    def get_actions(self) -> List[ConnectorAction]:
        return [
            ConnectorAction(
                id="ping",
                name="Ping",
                description="Return a canned pong",
                handler=self._ping,
            ),
            ConnectorAction(
                id="echo",
                name="Echo",
                description="Return the message, optionally repeated",
                handler=self._echo,
                schema=[
                    ParameterSpec(name="message", type="str"),
                    ParameterSpec(name="repeat", type="int", required=False, default=1),
                ],
            ),
        ]

    def test_connection(self) -> bool:
        return bool(self._token)

    def get_capabilities(self) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            max_concurrency=100,
            operations=("ping", "echo"),
        )

    def close(self) -> None:
        self._initialized = False

    def _ping(self, params: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        return {"pong": True}

    def _echo(self, params: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        repeat = max(1, params.get("repeat") or 1)
        return {
            "message": " ".join([params["message"]] * repeat),
            "execution_id": context.execution_id,
        }

"""
Built-in connector plugins.

Each plugin module exposes a definition and a connector class; the
class itself is the factory (called with config and credentials).
"""

from __future__ import annotations

from conduit.connectors.plugins.echo import ECHO_DEFINITION, EchoConnector
from conduit.connectors.plugins.generic_rest import GENERIC_REST_DEFINITION, GenericRESTConnector
from conduit.connectors.registry import IntegrationRegistry

BUILTIN_INTEGRATIONS = [
    (ECHO_DEFINITION, EchoConnector),
    (GENERIC_REST_DEFINITION, GenericRESTConnector),
]


def register_builtin_integrations(registry: IntegrationRegistry) -> None:
    """Register every built-in plugin that is not already in ``registry``."""
    for definition, factory in BUILTIN_INTEGRATIONS:
        if definition.id not in registry:
            registry.register(definition, factory)

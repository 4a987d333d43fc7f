"""
Conduit Test Configuration
Provides shared fixtures and a controllable plugin for the test suite.
"""
import os
import sys
import threading

import pytest

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conduit.connectors.base import ConnectorAction, ConnectorCapabilities
from conduit.connectors.models import IntegrationDefinition, ParameterSpec
from conduit.connectors.plugins import register_builtin_integrations
from conduit.connectors.registry import IntegrationRegistry
from conduit.connectors.store import ConnectorInstanceStore
from conduit.connectors.vault import CredentialVault, generate_key
from conduit.core.event_bus import EventBus
from conduit.core.manager import IntegrationManager


# ---------------------------------------------------------------------------
# Controllable plugin
# ---------------------------------------------------------------------------
class PluginTracker:
    """Shared record of what ControlledConnector instances did."""

    def __init__(self):
        self.lock = threading.Lock()
        self.created = []
        self.closed = []
        self.initialized = 0
        self.credentials_seen = []
        # initialize() and the "wait" action block on these until set
        self.init_gate = threading.Event()
        self.init_gate.set()
        self.release = threading.Event()
        self.release.set()
        self.action_entered = threading.Event()


class ControlledConnector:
    """Test plugin whose behaviour is driven by its config."""

    def __init__(self, config, credentials, tracker):
        self.config = config
        self.tracker = tracker
        with tracker.lock:
            tracker.created.append(self)
            tracker.credentials_seen.append(dict(credentials))

    def initialize(self):
        self.tracker.init_gate.wait(5)
        if self.config.get("fail_initialize"):
            raise RuntimeError("handshake refused")
        with self.tracker.lock:
            self.tracker.initialized += 1

    def get_actions(self):
        return [
            ConnectorAction(
                id="add",
                name="Add",
                handler=lambda p, ctx: p["a"] + p["b"],
                schema=[ParameterSpec("a", "int"), ParameterSpec("b", "int")],
            ),
            ConnectorAction(id="explode", name="Explode", handler=self._explode),
            ConnectorAction(id="wait", name="Wait", handler=self._wait),
            ConnectorAction(id="context", name="Context", handler=lambda p, ctx: ctx.to_dict()),
        ]

    def test_connection(self):
        if self.config.get("test_raises"):
            raise RuntimeError("probe crashed")
        return self.config.get("test_result", True)

    def get_capabilities(self):
        return ConnectorCapabilities(supports_batch=True, operations=("add", "explode"))

    def close(self):
        with self.tracker.lock:
            self.tracker.closed.append(self)
        if self.config.get("fail_close"):
            raise RuntimeError("close failed")

    def _explode(self, params, context):
        raise RuntimeError("boom")

    def _wait(self, params, context):
        self.tracker.action_entered.set()
        self.tracker.release.wait(5)
        return "done"


CONTROLLED_DEFINITION = IntegrationDefinition(
    id="controlled",
    name="Controlled",
    category="testing",
    description="Plugin double for manager tests",
    capabilities=("actions",),
    config_schema=[
        ParameterSpec("fail_initialize", "bool", required=False, default=False),
        ParameterSpec("fail_close", "bool", required=False, default=False),
        ParameterSpec("test_result", "bool", required=False, default=True),
        ParameterSpec("test_raises", "bool", required=False, default=False),
    ],
    credentials_schema=[ParameterSpec("api_key", "str")],
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def vault_key():
    """A fresh Fernet key."""
    return generate_key()


@pytest.fixture
def vault(vault_key):
    return CredentialVault(key=vault_key)


@pytest.fixture
def tracker():
    return PluginTracker()


@pytest.fixture
def registry(tracker):
    """Registry with the built-in plugins plus the controlled plugin."""
    reg = IntegrationRegistry()
    register_builtin_integrations(reg)
    reg.register(
        CONTROLLED_DEFINITION,
        lambda config, credentials: ControlledConnector(config, credentials, tracker),
    )
    return reg


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    """Every event published on ``bus``, in order."""
    received = []
    bus.subscribe_all(received.append)
    return received


@pytest.fixture
def manager(registry, vault, bus):
    mgr = IntegrationManager(registry, vault, ConnectorInstanceStore(), bus)
    yield mgr
    mgr.shutdown()


@pytest.fixture
def controlled(manager):
    """A created (not connected) instance of the controlled plugin."""
    return manager.create_connector("controlled", "ws-1", "Controlled", {}, {"api_key": "k-123"})


@pytest.fixture
def make_controlled(manager):
    """Factory fixture: create a controlled instance with custom config."""
    def _make(**config):
        return manager.create_connector(
            "controlled", "ws-1", "Controlled", config, {"api_key": "k-123"},
        )
    return _make

"""
Integration Manager — connector lifecycle and action dispatch.

The manager owns the connector instance store and the in-memory table
of live runtime connectors. It validates config and credentials against
the registry's schemas, keeps credentials encrypted through the vault,
drives the connection state machine, validates action params before any
plugin code runs, and publishes lifecycle events on the event bus.

Concurrency: every instance id has a gate. connect, disconnect, update
and delete wait until the gate is idle and mark it transitioning; the
gate's condition is released while plugin I/O (initialize, close) runs
and re-acquired to commit. execute_action waits only for transitions to
settle, so actions run in parallel with each other but never overlap a
state transition on the same instance.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from conduit.connectors.base import (
    Connector,
    ConnectorCapabilities,
    ConnectorStatus,
    ExecutionContext,
    close_connector,
    find_action,
)
from conduit.connectors.errors import (
    ConnectorConnectionError,
    DecryptionError,
    ExecutionError,
    FieldError,
    NotConnectedError,
    NotFoundError,
    UnknownActionError,
    UnknownIntegrationError,
    ValidationError,
)
from conduit.connectors.models import (
    ConnectionTestResult,
    ConnectorInstance,
    IntegrationDefinition,
    utcnow,
)
from conduit.connectors.plugins import register_builtin_integrations
from conduit.connectors.registry import IntegrationRegistry
from conduit.connectors.schema import validate_params
from conduit.connectors.store import ConnectorInstanceStore
from conduit.connectors.vault import CredentialVault
from conduit.core import event_bus as events
from conduit.core.config import ConduitConfig, load_config
from conduit.core.event_bus import EventBus

logger = logging.getLogger(__name__)


# ── Instance Gate ──────────────────────────────────────────────────

class _InstanceGate:
    """Serializes state transitions for one connector instance."""

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.transitioning = False
        self.in_flight = 0

    def idle(self) -> bool:
        return not self.transitioning and self.in_flight == 0

    def settled(self) -> bool:
        return not self.transitioning


# ── Integration Manager ────────────────────────────────────────────

class IntegrationManager:
    """Creates, connects, dispatches to and tears down connector instances."""

    def __init__(
        self,
        registry: IntegrationRegistry,
        vault: CredentialVault,
        store: Optional[ConnectorInstanceStore] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._registry = registry
        self._vault = vault
        self._store = store if store is not None else ConnectorInstanceStore()
        self._bus = bus if bus is not None else EventBus()
        self._lock = threading.Lock()
        self._gates: Dict[str, _InstanceGate] = {}
        self._connections: Dict[str, Connector] = {}

    @property
    def registry(self) -> IntegrationRegistry:
        return self._registry

    @property
    def store(self) -> ConnectorInstanceStore:
        return self._store

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    # ── Catalog ─────────────────────────────────────────────────────

    def list_definitions(self) -> List[IntegrationDefinition]:
        return self._registry.list_definitions()

    def list_by_category(self, category: str) -> List[IntegrationDefinition]:
        return self._registry.list_by_category(category)

    def search(self, text: str) -> List[IntegrationDefinition]:
        return self._registry.search(text)

    # ── Instance CRUD ───────────────────────────────────────────────

    def create_connector(
        self,
        integration_id: str,
        workspace_id: str,
        name: str,
        config: Optional[Mapping[str, Any]] = None,
        credentials: Optional[Mapping[str, Any]] = None,
    ) -> ConnectorInstance:
        """Validate, encrypt and store a new instance in status disconnected.

        Does not connect.

        Raises:
            UnknownIntegrationError: If ``integration_id`` is not registered
            ValidationError: Listing every violated config/credentials field
        """
        definition = self._registry.require(integration_id)

        errors: List[FieldError] = []
        if not workspace_id:
            errors.append(FieldError("workspace_id", "must not be empty"))
        if not name or not name.strip():
            errors.append(FieldError("name", "must not be empty"))
        try:
            valid_config, valid_credentials = self._validate_settings(
                definition,
                config if config is not None else {},
                credentials if credentials is not None else {},
            )
        except ValidationError as exc:
            errors.extend(exc.errors)
        if errors:
            raise ValidationError(errors, context=f"Integration '{integration_id}'")

        now = utcnow()
        instance = ConnectorInstance(
            id=f"conn_{uuid.uuid4().hex}",
            integration_id=integration_id,
            workspace_id=workspace_id,
            name=name,
            config=valid_config,
            credentials=self._vault.encrypt(valid_credentials),
            status=ConnectorStatus.DISCONNECTED,
            created_at=now,
            updated_at=now,
        )
        self._store.add(instance)

        logger.info(
            "Connector created: %s (%s) in workspace %s",
            instance.id, integration_id, workspace_id,
        )
        self._bus.emit(events.CONNECTOR_CREATED, **self._payload(instance))
        return instance

    def update_connector(
        self,
        connector_id: str,
        name: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        credentials: Optional[Mapping[str, Any]] = None,
    ) -> ConnectorInstance:
        """Merge a partial update. None means "leave unchanged".

        Replacing config or credentials invalidates a live connector; a
        connected instance drops back to disconnected and must reconnect.

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: Listing every invalid name, config or credentials field
        """
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.idle)
            instance = self._require_gated(connector_id, gate)

            errors: List[FieldError] = []
            if name is not None and not name.strip():
                errors.append(FieldError("name", "must not be empty"))
            definition = self._registry.require(instance.integration_id)
            valid_config = valid_credentials = None
            try:
                valid_config, valid_credentials = self._validate_settings(
                    definition, config, credentials
                )
            except ValidationError as exc:
                errors.extend(exc.errors)
            if errors:
                raise ValidationError(errors, context=f"Connector '{connector_id}'")

            if name is not None:
                instance.name = name
            if valid_config is not None:
                instance.config = valid_config
            if valid_credentials is not None:
                instance.credentials = self._vault.encrypt(valid_credentials)

            replaced = config is not None or credentials is not None
            invalidated = replaced and instance.status is ConnectorStatus.CONNECTED
            if invalidated:
                self._transition(instance, ConnectorStatus.DISCONNECTED)
            instance.updated_at = utcnow()
            self._store.save(instance)

            # Only detach the runtime object once the new record is persisted
            stale = self._pop_connection(connector_id) if replaced else None
            if stale is not None:
                gate.transitioning = True

        if stale is not None:
            try:
                self._release(connector_id, stale)
            finally:
                self._settle(gate)

        logger.info("Connector updated: %s", connector_id)
        self._bus.emit(events.CONNECTOR_UPDATED, **self._payload(instance))
        if invalidated:
            self._bus.emit(events.CONNECTOR_DISCONNECTED, **self._payload(instance))
        return instance

    def delete_connector(self, connector_id: str) -> None:
        """Tear down any live connector, then remove the instance.

        Idempotent: deleting an unknown id is not an error.
        """
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.idle)
            instance = self._store.get(connector_id)
            if instance is None:
                self._drop_gate(connector_id, gate)
                logger.debug("Delete of unknown connector %s ignored", connector_id)
                return
            gate.transitioning = True

        try:
            connector = self._pop_connection(connector_id)
            if connector is not None:
                self._release(connector_id, connector)
            self._store.delete(connector_id)
        finally:
            self._settle(gate)
        self._drop_gate(connector_id, gate)

        logger.info("Connector deleted: %s", connector_id)
        self._bus.emit(events.CONNECTOR_DELETED, **self._payload(instance))

    def get_connector(self, connector_id: str) -> Optional[ConnectorInstance]:
        return self._store.get(connector_id)

    def get_connectors_by_workspace(self, workspace_id: str) -> List[ConnectorInstance]:
        return self._store.list_by_workspace(workspace_id)

    # ── Connection state machine ────────────────────────────────────

    def connect(self, connector_id: str) -> ConnectorInstance:
        """Move an instance to connected, building and initializing its connector.

        A connected instance is returned unchanged.

        Raises:
            NotFoundError: If the instance does not exist
            DecryptionError: If the stored credentials cannot be decrypted
            UnknownIntegrationError: If the integration is no longer registered
            ConnectorConnectionError: If the factory or initialize() failed
        """
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.idle)
            instance = self._require_gated(connector_id, gate)
            if instance.status is ConnectorStatus.CONNECTED and self.is_live(connector_id):
                return instance
            gate.transitioning = True

        # Other callers on this id wait until the gate settles
        failure: Optional[Exception] = None
        try:
            stale = self._pop_connection(connector_id)
            if stale is not None:
                self._release(connector_id, stale)
            if instance.status is ConnectorStatus.CONNECTED:
                self._transition(instance, ConnectorStatus.DISCONNECTED)
            self._transition(instance, ConnectorStatus.CONNECTING)
            self._bus.emit(events.CONNECTOR_CONNECTING, **self._payload(instance))

            try:
                connector = self._open(instance)
            except Exception as exc:
                failure = exc
                self._transition(instance, ConnectorStatus.ERROR, error=str(exc))
            else:
                self._commit_connection(instance, connector)
        finally:
            self._settle(gate)

        if failure is not None:
            logger.warning("Connector %s failed to connect: %s", connector_id, failure)
            self._bus.emit(events.CONNECTOR_ERROR, error=str(failure), **self._payload(instance))
            if isinstance(failure, (ConnectorConnectionError, DecryptionError, UnknownIntegrationError)):
                raise failure
            raise ConnectorConnectionError(
                f"Connector '{connector_id}' failed to connect: {failure}", connector_id
            ) from failure

        self._bus.emit(events.CONNECTOR_CONNECTED, **self._payload(instance))
        return instance

    def disconnect(self, connector_id: str) -> ConnectorInstance:
        """Release the live connector, if any, and move to disconnected.

        Plugin teardown failures are logged, not raised.

        Raises:
            NotFoundError: If the instance does not exist
        """
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.idle)
            instance = self._require_gated(connector_id, gate)
            live = self.is_live(connector_id)
            if not live and instance.status is ConnectorStatus.DISCONNECTED:
                return instance
            gate.transitioning = True

        try:
            connector = self._pop_connection(connector_id)
            if connector is not None:
                self._release(connector_id, connector)
            if instance.status is not ConnectorStatus.DISCONNECTED:
                self._transition(instance, ConnectorStatus.DISCONNECTED)
        finally:
            self._settle(gate)

        self._bus.emit(events.CONNECTOR_DISCONNECTED, **self._payload(instance))
        return instance

    def shutdown(self) -> None:
        """Disconnect every live connector."""
        with self._lock:
            live = list(self._connections)
        for connector_id in live:
            try:
                self.disconnect(connector_id)
            except NotFoundError:
                logger.debug("Connector %s deleted during shutdown", connector_id)
        logger.info("Integration manager shut down (%d connector(s) released)", len(live))

    # ── Testing ─────────────────────────────────────────────────────

    def test_connector(self, connector_id: str) -> ConnectionTestResult:
        """Build a throwaway connector and call its test_connection().

        Never changes the instance status; always records last_tested.

        Raises:
            NotFoundError: If the instance does not exist
            UnknownIntegrationError: If the integration is no longer registered
        """
        instance = self._require(connector_id)
        factory = self._registry.resolve_implementation(instance.integration_id)

        try:
            credentials = self._vault.decrypt(instance.credentials)
        except DecryptionError as exc:
            result = ConnectionTestResult(False, str(exc), {"error": "DecryptionError"})
        else:
            connector = None
            try:
                connector = factory(dict(instance.config), credentials)
                ok = bool(connector.test_connection())
                result = ConnectionTestResult(
                    ok, "Connection test successful" if ok else "Connection test failed",
                )
            except Exception as exc:
                logger.warning("Connection test for %s raised: %s", connector_id, exc)
                result = ConnectionTestResult(False, str(exc), {"error": type(exc).__name__})
            finally:
                if connector is not None:
                    self._release(connector_id, connector)

        self._record_tested(connector_id)
        self._bus.emit(
            events.CONNECTOR_TESTED, success=result.success, **self._payload(instance)
        )
        return result

    # ── Dispatch ────────────────────────────────────────────────────

    def execute_action(
        self,
        connector_id: str,
        action_id: str,
        params: Optional[Mapping[str, Any]] = None,
        context: Optional[ExecutionContext] = None,
    ) -> Any:
        """Validate params and run an action on a connected instance.

        Raises:
            NotFoundError: If the instance does not exist
            NotConnectedError: If the instance is not connected
            UnknownActionError: If the connector has no such action
            ValidationError: If params do not satisfy the action schema
            ExecutionError: If the plugin raised; the instance moves to error
        """
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.settled)
            instance = self._require_gated(connector_id, gate)
            with self._lock:
                connector = self._connections.get(connector_id)
            if instance.status is not ConnectorStatus.CONNECTED or connector is None:
                raise NotConnectedError(connector_id, instance.status.value)
            gate.in_flight += 1

        try:
            return self._dispatch(gate, instance, connector, action_id, params, context)
        finally:
            with gate.cond:
                gate.in_flight -= 1
                gate.cond.notify_all()

    def _dispatch(
        self,
        gate: _InstanceGate,
        instance: ConnectorInstance,
        connector: Connector,
        action_id: str,
        params: Optional[Mapping[str, Any]],
        context: Optional[ExecutionContext],
    ) -> Any:
        action = find_action(connector, action_id)
        if action is None:
            raise UnknownActionError(action_id, instance.id)
        validated = validate_params(action.schema, params, context=f"Action '{action_id}' params")
        if context is None:
            context = ExecutionContext(workspace_id=instance.workspace_id)

        try:
            result = action.execute(validated, context)
        except Exception as exc:
            with gate.cond:
                current = self._store.get(instance.id)
                if current is not None and current.status.can_transition_to(ConnectorStatus.ERROR):
                    self._transition(current, ConnectorStatus.ERROR, error=str(exc))
            logger.warning("Action %s on connector %s failed: %s", action_id, instance.id, exc)
            self._bus.emit(
                events.ACTION_FAILED,
                connector_id=instance.id,
                action_id=action_id,
                execution_id=context.execution_id,
                error=str(exc),
            )
            self._bus.emit(events.CONNECTOR_ERROR, error=str(exc), **self._payload(instance))
            raise ExecutionError(action_id, str(exc), instance.id, original=exc) from exc

        logger.debug("Action %s on connector %s executed", action_id, instance.id)
        self._bus.emit(
            events.ACTION_EXECUTED,
            connector_id=instance.id,
            action_id=action_id,
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
        )
        return result

    def list_actions(self, connector_id: str) -> List[Dict[str, str]]:
        """Describe the actions of a connected instance."""
        return [a.describe() for a in self._live(connector_id).get_actions()]

    def get_capabilities(self, connector_id: str) -> ConnectorCapabilities:
        """Capabilities of a connected instance."""
        return self._live(connector_id).get_capabilities()

    def is_live(self, connector_id: str) -> bool:
        """True if a runtime connector object exists for the instance."""
        with self._lock:
            return connector_id in self._connections

    @property
    def live_connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    # ── Key rotation ────────────────────────────────────────────────

    def rotate_credentials(self) -> Tuple[int, List[str]]:
        """Re-encrypt every stored credential blob under the vault's primary key.

        Returns (rotated count, ids whose blobs could not be decrypted).
        """
        rotated = 0
        failed: List[str] = []
        for listed in self._store.list_all():
            gate = self._gate(listed.id)
            with gate.cond:
                gate.cond.wait_for(gate.settled)
                instance = self._store.get(listed.id)
                if instance is None:
                    self._drop_gate(listed.id, gate)
                    continue
                try:
                    instance.credentials = self._vault.rotate(instance.credentials)
                except DecryptionError:
                    logger.error("Credentials of connector %s could not be rotated", instance.id)
                    failed.append(instance.id)
                    continue
                self._store.save(instance)
                rotated += 1
        logger.info("Rotated credentials of %d connector(s), %d failed", rotated, len(failed))
        return rotated, failed

    # ── Internals ───────────────────────────────────────────────────

    def _gate(self, connector_id: str) -> _InstanceGate:
        with self._lock:
            gate = self._gates.get(connector_id)
            if gate is None:
                gate = _InstanceGate()
                self._gates[connector_id] = gate
            return gate

    def _drop_gate(self, connector_id: str, gate: _InstanceGate) -> None:
        with self._lock:
            if self._gates.get(connector_id) is gate:
                del self._gates[connector_id]

    def _settle(self, gate: _InstanceGate) -> None:
        with gate.cond:
            gate.transitioning = False
            gate.cond.notify_all()

    def _require(self, connector_id: str) -> ConnectorInstance:
        instance = self._store.get(connector_id)
        if instance is None:
            raise NotFoundError(connector_id)
        return instance

    def _require_gated(self, connector_id: str, gate: _InstanceGate) -> ConnectorInstance:
        """Like _require, but forgets the gate of an id that does not exist."""
        instance = self._store.get(connector_id)
        if instance is None:
            self._drop_gate(connector_id, gate)
            raise NotFoundError(connector_id)
        return instance

    def _live(self, connector_id: str) -> Connector:
        instance = self._require(connector_id)
        with self._lock:
            connector = self._connections.get(connector_id)
        if connector is None or instance.status is not ConnectorStatus.CONNECTED:
            raise NotConnectedError(connector_id, instance.status.value)
        return connector

    def _pop_connection(self, connector_id: str) -> Optional[Connector]:
        with self._lock:
            return self._connections.pop(connector_id, None)

    def _transition(
        self,
        instance: ConnectorInstance,
        target: ConnectorStatus,
        error: Optional[str] = None,
    ) -> None:
        """Apply and persist a status change. Caller owns the instance gate."""
        instance.status.check_transition(target)
        previous = instance.status
        instance.status = target
        if target is ConnectorStatus.ERROR:
            instance.last_error = error
        elif target is ConnectorStatus.CONNECTED:
            instance.last_error = None
        instance.updated_at = utcnow()
        self._store.save(instance)
        logger.info("Connector %s: %s -> %s", instance.id, previous.value, target.value)

    def _commit_connection(self, instance: ConnectorInstance, connector: Connector) -> None:
        """Persist connected, then publish the runtime object.

        If the status cannot be persisted the connector is released and the
        instance is moved to error where the store allows it.
        """
        try:
            self._transition(instance, ConnectorStatus.CONNECTED)
        except Exception as exc:
            self._release(instance.id, connector)
            self._mark_error(instance.id, exc)
            raise
        with self._lock:
            self._connections[instance.id] = connector

    def _mark_error(self, connector_id: str, exc: Exception) -> None:
        current = self._store.get(connector_id)
        if current is None or not current.status.can_transition_to(ConnectorStatus.ERROR):
            return
        try:
            self._transition(current, ConnectorStatus.ERROR, error=str(exc))
        except Exception as save_exc:
            logger.error("Connector %s could not be marked as error: %s", connector_id, save_exc)

    def _record_tested(self, connector_id: str) -> None:
        gate = self._gate(connector_id)
        with gate.cond:
            gate.cond.wait_for(gate.settled)
            instance = self._store.get(connector_id)
            if instance is None:
                self._drop_gate(connector_id, gate)
                return
            instance.last_tested = utcnow()
            self._store.save(instance)

    def _validate_settings(
        self,
        definition: IntegrationDefinition,
        config: Optional[Mapping[str, Any]],
        credentials: Optional[Mapping[str, Any]],
    ) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """Validate config and credentials together; None skips that part."""
        errors: List[FieldError] = []
        valid_config = valid_credentials = None
        if config is not None:
            try:
                valid_config = validate_params(definition.config_schema, config, context="Config")
            except ValidationError as exc:
                errors.extend(exc.prefixed("config").errors)
        if credentials is not None:
            try:
                valid_credentials = validate_params(
                    definition.credentials_schema, credentials, context="Credentials"
                )
            except ValidationError as exc:
                errors.extend(exc.prefixed("credentials").errors)
        if errors:
            raise ValidationError(errors, context=f"Integration '{definition.id}'")
        return valid_config, valid_credentials

    def _open(self, instance: ConnectorInstance) -> Connector:
        """Build and initialize the runtime connector for ``instance``."""
        factory = self._registry.resolve_implementation(instance.integration_id)
        credentials = self._vault.decrypt(instance.credentials)
        connector = factory(dict(instance.config), credentials)
        if not isinstance(connector, Connector):
            raise ConnectorConnectionError(
                f"Factory for '{instance.integration_id}' did not return a connector",
                instance.id,
            )
        try:
            connector.initialize()
        except Exception:
            self._release(instance.id, connector)
            raise
        return connector

    def _release(self, connector_id: str, connector: Any) -> None:
        """Best-effort plugin teardown."""
        try:
            close_connector(connector)
        except Exception as exc:
            logger.warning("Teardown of connector %s failed: %s", connector_id, exc)

    @staticmethod
    def _payload(instance: ConnectorInstance) -> Dict[str, Any]:
        return {
            "connector_id": instance.id,
            "integration_id": instance.integration_id,
            "workspace_id": instance.workspace_id,
            "name": instance.name,
            "status": instance.status.value,
        }


# ── Wiring ─────────────────────────────────────────────────────────

def create_integration_manager(
    config: Optional[ConduitConfig] = None,
    registry: Optional[IntegrationRegistry] = None,
    bus: Optional[EventBus] = None,
) -> IntegrationManager:
    """Build a manager (vault, store, registry, event bus) from configuration."""
    config = config if config is not None else load_config()
    vault = CredentialVault.from_env(
        key_env_var=config.vault.key_env_var,
        previous_keys_env_var=config.vault.previous_keys_env_var,
        allow_ephemeral_key=config.vault.allow_ephemeral_key,
    )
    store = ConnectorInstanceStore(config.store.path, backup=config.store.backup)
    registry = registry if registry is not None else IntegrationRegistry()
    if config.builtin_integrations:
        register_builtin_integrations(registry)
    return IntegrationManager(registry, vault, store, bus if bus is not None else EventBus())

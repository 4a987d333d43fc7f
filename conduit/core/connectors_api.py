"""
Connectors API — HTTP surface of the Integration Manager.

Lists the integration catalog and exposes connector instance CRUD,
connect/disconnect/test and action execution. Instance responses never
include the encrypted credential blob.

Router prefix: /api
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field

from conduit.connectors.base import ExecutionContext
from conduit.connectors.errors import (
    ConnectorConnectionError,
    DecryptionError,
    ExecutionError,
    NotConnectedError,
    NotFoundError,
    UnknownActionError,
    UnknownIntegrationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["connectors"])

# Module-level reference, set during app startup
_manager = None


def init_connectors_api(manager) -> None:
    """Initialize API with the integration manager."""
    global _manager
    _manager = manager


def _require_manager():
    if _manager is None:
        raise HTTPException(status_code=500, detail="Connectors API not initialized")
    return _manager


def _http_error(exc: Exception) -> HTTPException:
    """Map a framework error to the HTTP status callers should see."""
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "errors": [e.to_dict() for e in exc.errors]},
        )
    if isinstance(exc, (NotFoundError, UnknownIntegrationError, UnknownActionError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (NotConnectedError, DecryptionError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ConnectorConnectionError, ExecutionError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


_MAPPED_ERRORS = (
    ValidationError,
    NotFoundError,
    UnknownIntegrationError,
    UnknownActionError,
    NotConnectedError,
    DecryptionError,
    ConnectorConnectionError,
    ExecutionError,
)


# ── Request / Response Models ────────────────────────────────────

class CreateConnectorRequest(BaseModel):
    integration_id: str
    workspace_id: str
    name: str
    config: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Any] = Field(default_factory=dict)


class UpdateConnectorRequest(BaseModel):
    name: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    credentials: Optional[Dict[str, Any]] = None


class ContextRequest(BaseModel):
    workflow_id: Optional[str] = None
    execution_id: Optional[str] = None
    user_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class ExecuteActionRequest(BaseModel):
    params: Dict[str, Any] = Field(default_factory=dict)
    context: Optional[ContextRequest] = None


class ConnectorResponse(BaseModel):
    id: str
    integration_id: str
    workspace_id: str
    name: str
    config: Dict[str, Any]
    status: str
    last_tested: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ConnectorsListResponse(BaseModel):
    connectors: List[ConnectorResponse]
    total: int


class IntegrationsListResponse(BaseModel):
    integrations: List[Dict[str, Any]]
    total: int


class TestResultResponse(BaseModel):
    connector_id: str
    success: bool
    message: str
    details: Dict[str, Any]


class ActionResultResponse(BaseModel):
    connector_id: str
    action_id: str
    execution_id: str
    result: Any = None


def _instance_response(instance) -> ConnectorResponse:
    return ConnectorResponse(**instance.to_dict(include_credentials=False))


# ── Catalog ──────────────────────────────────────────────────────

@router.get("/integrations", response_model=IntegrationsListResponse)
def list_integrations(category: Optional[str] = None, q: Optional[str] = None):
    """List registered integrations, optionally filtered by category and text."""
    manager = _require_manager()
    if q:
        definitions = manager.search(q)
    else:
        definitions = manager.list_definitions()
    if category:
        definitions = [d for d in definitions if d.category.lower() == category.lower()]
    items = [d.to_dict() for d in definitions]
    return IntegrationsListResponse(integrations=items, total=len(items))


# ── Instances ────────────────────────────────────────────────────

@router.post("/connectors", response_model=ConnectorResponse, status_code=201)
def create_connector(body: CreateConnectorRequest):
    """Create a connector instance. Does not connect."""
    manager = _require_manager()
    try:
        instance = manager.create_connector(
            body.integration_id, body.workspace_id, body.name, body.config, body.credentials,
        )
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None
    return _instance_response(instance)


@router.get("/connectors", response_model=ConnectorsListResponse)
def list_connectors(workspace_id: str = Query(...)):
    """List the connector instances of a workspace."""
    manager = _require_manager()
    items = [_instance_response(i) for i in manager.get_connectors_by_workspace(workspace_id)]
    return ConnectorsListResponse(connectors=items, total=len(items))


@router.get("/connectors/{connector_id}", response_model=ConnectorResponse)
def get_connector(connector_id: str):
    manager = _require_manager()
    instance = manager.get_connector(connector_id)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"Connector '{connector_id}' not found")
    return _instance_response(instance)


@router.patch("/connectors/{connector_id}", response_model=ConnectorResponse)
def update_connector(connector_id: str, body: UpdateConnectorRequest):
    """Partial update. Omitted fields stay unchanged."""
    manager = _require_manager()
    try:
        instance = manager.update_connector(
            connector_id, name=body.name, config=body.config, credentials=body.credentials,
        )
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None
    return _instance_response(instance)


@router.delete("/connectors/{connector_id}", status_code=204)
def delete_connector(connector_id: str):
    manager = _require_manager()
    manager.delete_connector(connector_id)
    return Response(status_code=204)


# ── Lifecycle ────────────────────────────────────────────────────

@router.post("/connectors/{connector_id}/connect", response_model=ConnectorResponse)
def connect_connector(connector_id: str):
    manager = _require_manager()
    try:
        instance = manager.connect(connector_id)
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None
    return _instance_response(instance)


@router.post("/connectors/{connector_id}/disconnect", response_model=ConnectorResponse)
def disconnect_connector(connector_id: str):
    manager = _require_manager()
    try:
        instance = manager.disconnect(connector_id)
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None
    return _instance_response(instance)


@router.post("/connectors/{connector_id}/test", response_model=TestResultResponse)
def test_connector(connector_id: str):
    """Run a connection test without changing the instance status."""
    manager = _require_manager()
    try:
        result = manager.test_connector(connector_id)
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None
    return TestResultResponse(connector_id=connector_id, **result.to_dict())


# ── Actions ──────────────────────────────────────────────────────

@router.post(
    "/connectors/{connector_id}/actions/{action_id}",
    response_model=ActionResultResponse,
)
def execute_action(connector_id: str, action_id: str, body: ExecuteActionRequest):
    """Validate params and execute an action on a connected instance."""
    manager = _require_manager()
    instance = manager.get_connector(connector_id)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"Connector '{connector_id}' not found")

    ctx = body.context or ContextRequest()
    context_kwargs = {
        "workflow_id": ctx.workflow_id,
        "user_id": ctx.user_id,
        "workspace_id": instance.workspace_id,
        "variables": ctx.variables,
    }
    if ctx.execution_id:
        context_kwargs["execution_id"] = ctx.execution_id
    context = ExecutionContext(**context_kwargs)

    try:
        result = manager.execute_action(connector_id, action_id, body.params, context)
    except _MAPPED_ERRORS as e:
        raise _http_error(e) from None

    logger.info("Action %s executed on connector %s via API", action_id, connector_id)
    return ActionResultResponse(
        connector_id=connector_id,
        action_id=action_id,
        execution_id=context.execution_id,
        result=result,
    )

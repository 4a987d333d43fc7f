"""
Generic REST Connector — user-configurable REST API integration.

Actions are generated from the configured endpoints, not hardcoded.
The config schema rejects non-HTTPS, wildcard and private/localhost base
URLs, and endpoint paths with traversal sequences. HTTP goes through a
pooled requests.Session owned by the connector and closed on close().
"""

from __future__ import annotations

import ipaddress
import logging
import re
import time
import urllib.parse
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, ConfigDict, Field, field_validator

from conduit.connectors.base import ConnectorAction, ConnectorCapabilities, ExecutionContext
from conduit.connectors.errors import ConnectorConnectionError
from conduit.connectors.models import IntegrationDefinition, ParameterSpec

logger = logging.getLogger(__name__)


# ── Validation ────────────────────────────────────────────────────

_VALID_AUTH_TYPES = ("bearer", "api_key")
_VALID_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
_BODY_METHODS = ("POST", "PUT", "PATCH")

_PRIVATE_NETWORKS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
]

_PARAM_NAME_RE = re.compile(r"^[a-zA-Z0-9_]{1,64}$")
_PLACEHOLDER_RE = re.compile(r"\{([a-zA-Z0-9_]+)\}")


def _is_private_host(hostname: str) -> bool:
    """Check if a hostname is a private/local address."""
    if hostname in ("localhost", "localhost.localdomain"):
        return True
    try:
        addr = ipaddress.ip_address(hostname)
        return any(addr in net for net in _PRIVATE_NETWORKS)
    except ValueError:
        pass
    return False


class RESTEndpoint(BaseModel):
    """Configuration for a single REST endpoint."""
    model_config = ConfigDict(extra="forbid")

    id: str
    path: str
    method: str = "GET"
    name: str = ""
    description: str = ""

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not _PARAM_NAME_RE.match(v):
            raise ValueError("endpoint id must be alphanumeric + underscore, max 64 chars")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"endpoint path must start with /, got '{v}'")
        if "../" in v or "..\\" in v:
            raise ValueError(f"path traversal detected in '{v}'")
        return v

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        v = v.upper()
        if v not in _VALID_METHODS:
            raise ValueError(f"method must be one of {_VALID_METHODS}, got '{v}'")
        return v


class GenericRESTConfig(BaseModel):
    """Non-secret settings of a generic REST connector."""
    model_config = ConfigDict(extra="forbid")

    base_url: str
    endpoints: List[RESTEndpoint] = Field(min_length=1, max_length=50)
    auth_type: str = "bearer"
    health_path: str = ""
    timeout_seconds: int = 30

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("base_url must start with https://")
        hostname = urlparse(v).hostname or ""
        if not hostname:
            raise ValueError("base_url has no host")
        if "*" in hostname:
            raise ValueError("wildcard base_urls not allowed")
        if _is_private_host(hostname):
            raise ValueError("private/localhost base_url not allowed")
        return v.rstrip("/")

    @field_validator("auth_type")
    @classmethod
    def validate_auth_type(cls, v: str) -> str:
        if v not in _VALID_AUTH_TYPES:
            raise ValueError(f"auth_type must be one of {_VALID_AUTH_TYPES}")
        return v

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        if v and not v.startswith("/"):
            raise ValueError("health_path must start with /")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1 or v > 300:
            raise ValueError(f"timeout_seconds must be 1-300, got {v}")
        return v


class RESTCallParams(BaseModel):
    """Parameters accepted by every generated action."""
    model_config = ConfigDict(extra="forbid")

    path_params: Dict[str, Any] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None

    @field_validator("path_params")
    @classmethod
    def validate_path_param_names(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        for key in v:
            if not _PARAM_NAME_RE.match(key):
                raise ValueError(f"invalid path param name '{key}'")
        return v


class RESTRequestError(Exception):
    """The remote API answered with an error status."""

    def __init__(self, status_code: int, method: str, url: str) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code} from {method} {url}")


GENERIC_REST_DEFINITION = IntegrationDefinition(
    id="generic-rest",
    name="Generic REST API",
    category="developer-tools",
    description="Call any HTTPS REST API by declaring its endpoints",
    capabilities=("actions",),
    features=("REST", "HTTP", "Custom Endpoints"),
    config_schema=GenericRESTConfig,
    credentials_schema=[ParameterSpec(name="token", type="str", description="Bearer token or API key")],
)


# ── Generic REST Connector ────────────────────────────────────────

class GenericRESTConnector:
    """User-configurable REST API connector."""

    def __init__(self, config: Dict[str, Any], credentials: Dict[str, Any]) -> None:
        self._config = GenericRESTConfig.model_validate(config)
        self._token = credentials.get("token", "")
        self._session = requests.Session()
        if self._config.auth_type == "bearer":
            self._session.headers["Authorization"] = f"Bearer {self._token}"
        else:
            self._session.headers["X-API-Key"] = self._token
        self._actions = [self._build_action(ep) for ep in self._config.endpoints]

    def _build_action(self, endpoint: RESTEndpoint) -> ConnectorAction:
        def handler(params: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
            return self._call(endpoint, params, context)

        return ConnectorAction(
            id=endpoint.id,
            name=endpoint.name or endpoint.id,
            description=endpoint.description or f"{endpoint.method} {endpoint.path}",
            handler=handler,
            schema=RESTCallParams,
        )

    def initialize(self) -> None:
        """Probe the health path, if one is configured."""
        if not self._config.health_path:
            return
        url = f"{self._config.base_url}{self._config.health_path}"
        try:
            resp = self._session.get(url, timeout=self._config.timeout_seconds)
        except requests.RequestException as e:
            raise ConnectorConnectionError(f"Health check failed: {e}", "generic-rest") from e
        if resp.status_code >= 400:
            raise ConnectorConnectionError(
                f"Health check returned HTTP {resp.status_code}", "generic-rest"
            )

    def get_actions(self) -> List[ConnectorAction]:
        return list(self._actions)

    def test_connection(self) -> bool:
        url = f"{self._config.base_url}{self._config.health_path}"
        try:
            resp = self._session.get(url, timeout=self._config.timeout_seconds)
        except requests.RequestException as e:
            logger.info("Generic REST test_connection failed: %s", e)
            return False
        return resp.status_code < 400

    def get_capabilities(self) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            operations=tuple(ep.id for ep in self._config.endpoints),
            extra={"base_url": self._config.base_url},
        )

    def close(self) -> None:
        """Close the underlying requests.Session."""
        self._session.close()

    def _build_url(self, endpoint: RESTEndpoint, path_params: Dict[str, Any]) -> str:
        missing = [n for n in _PLACEHOLDER_RE.findall(endpoint.path) if n not in path_params]
        if missing:
            raise ValueError(
                f"Endpoint '{endpoint.id}' is missing path parameter(s): {', '.join(missing)}"
            )
        path = _PLACEHOLDER_RE.sub(
            lambda m: urllib.parse.quote(str(path_params[m.group(1)]), safe=""), endpoint.path
        )
        return f"{self._config.base_url}{path}"

    def _call(
        self,
        endpoint: RESTEndpoint,
        params: Dict[str, Any],
        context: Optional[ExecutionContext],
    ) -> Dict[str, Any]:
        url = self._build_url(endpoint, params.get("path_params") or {})
        kwargs: Dict[str, Any] = {
            "method": endpoint.method,
            "url": url,
            "params": params.get("query") or None,
            "timeout": self._config.timeout_seconds,
        }
        if endpoint.method in _BODY_METHODS and params.get("body") is not None:
            kwargs["json"] = params["body"]
        if context is not None:
            kwargs["headers"] = {"X-Execution-Id": context.execution_id}

        start = time.time()
        resp = self._session.request(**kwargs)
        elapsed_ms = (time.time() - start) * 1000

        if resp.status_code >= 400:
            raise RESTRequestError(resp.status_code, endpoint.method, url)

        try:
            body = resp.json()
        except (ValueError, requests.exceptions.JSONDecodeError):
            body = resp.text

        return {
            "status_code": resp.status_code,
            "body": body,
            "elapsed_ms": elapsed_ms,
        }

"""HTTP client for the patient-care REST API.

This module provides:
- RemoteAPI: HTTP client for the per-entity collection/item endpoints
- Exception hierarchy for API failures (APIError and subclasses)
- Queue item dispatch (see entities.route_for)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from medsync.client.entities import Route, get_entity, route_for

if TYPE_CHECKING:
    from medsync.client.sync.types import QueueItem
    from medsync.core.config import ServerConfig

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], "str | None"]


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class ConflictError(APIError):
    """Server rejected the change as conflicting."""


class NotFoundError(APIError):
    """Resource not found."""


class TransportError(APIError):
    """Request never got a usable response (network, timeout, bad JSON)."""


def _static_token(token: str | None) -> TokenProvider:
    return lambda: token


def extract_items(entity: str, data: Any) -> list[dict[str, Any]]:
    """Extract the record list from a collection response.

    Accepts a bare array, ``{"items": [...]}`` or ``{"<entity>": [...]}``.

    Raises:
        TransportError: If the body has none of these shapes.
    """
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("items", entity):
            value = data.get(key)
            if isinstance(value, list):
                return value
    raise TransportError(f"Unexpected {entity} list response shape")


class RemoteAPI:
    """HTTP client for the remote patient-care API."""

    def __init__(
        self,
        config: ServerConfig,
        token_provider: TokenProvider | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            config: Server connection settings.
            token_provider: Callable returning the current bearer token.
                Defaults to the static token of the config.
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        self._token_provider = token_provider or _static_token(config.token)
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def server_url(self) -> str:
        """Get the API base URL."""
        return self._config.server_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> RemoteAPI:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Credentials ===

    def token(self) -> str | None:
        """Get the current bearer token, or None if signed out."""
        return self._token_provider() or None

    def has_token(self) -> bool:
        """Check if a bearer token is available."""
        return self.token() is not None

    def _headers(self) -> dict[str, str]:
        token = self.token()
        if token is None:
            return {}
        return {"Authorization": f"Bearer {token}"}

    # === Request plumbing ===

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request and map failures to APIError subclasses."""
        try:
            response = self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._headers(),
            )
        except httpx.TransportError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code == 409:
            raise ConflictError(self._error_detail(response, "Conflict"), 409)
        if response.status_code >= 400:
            detail = self._error_detail(response, "Unknown error")
            raise APIError(detail, response.status_code)
        return response

    @staticmethod
    def _error_detail(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or default
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("error") or default)
        return default

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a JSON body; empty bodies decode to None."""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}") from e

    # === Health check ===

    def health_check(self, timeout: float | None = None) -> bool:
        """Check if the API is reachable.

        Returns:
            True if the health endpoint answered with a 2xx status.
        """
        try:
            response = self._client.get(
                "/health",
                timeout=timeout if timeout is not None else self._config.timeout,
            )
            return response.is_success
        except httpx.HTTPError:
            return False

    # === Record operations ===

    def list_records(self, entity: str, scope_id: str) -> list[dict[str, Any]]:
        """List the records of an owner scope.

        Args:
            entity: Entity tag.
            scope_id: Patient profile id.

        Returns:
            Record dictionaries as returned by the server.
        """
        spec = get_entity(entity)
        response = self._request(
            "GET", spec.path, params={"patientProfileId": scope_id}
        )
        return extract_items(entity, self._json(response))

    def create_record(self, entity: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create a record.

        Returns:
            The server's copy of the record (the request body if the server
            echoed nothing).
        """
        spec = get_entity(entity)
        data = self._json(self._request("POST", spec.path, json=body))
        return data if isinstance(data, dict) else dict(body)

    def update_record(
        self, entity: str, record_id: str, body: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Replace a record."""
        spec = get_entity(entity)
        data = self._json(
            self._request("PUT", spec.item_path(record_id), json=body)
        )
        return data if isinstance(data, dict) else None

    def delete_record(self, entity: str, record_id: str) -> None:
        """Delete a record."""
        spec = get_entity(entity)
        self._request("DELETE", spec.item_path(record_id))

    # === Queue dispatch ===

    def send(self, route: Route) -> Any:
        """Send a resolved request.

        Returns:
            Decoded JSON body, or None for empty responses.
        """
        response = self._request(route.method, route.path, json=route.body)
        return self._json(response)

    def dispatch(self, item: QueueItem) -> Any:
        """Replay a queued mutation against the server.

        Raises:
            UnknownEntityError: If the entity tag has no route.
            DispatchError: If the payload cannot be routed.
            APIError: If the server rejects the request.
        """
        route = route_for(item.entity, item.action, item.payload)
        logger.debug("Dispatching %r as %s %s", item, route.method, route.path)
        return self.send(route)

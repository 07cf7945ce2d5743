"""
HTTP client for the provider that delivers messages and publishes seals.

Implements the transport and ledger collaborator functions expected by the
bot. Retries are left to the persistent queues; this client only translates
HTTP failures into the error categories the retry predicates understand.
"""

from typing import Any

import httpx

from botcore.errors import (
    DuplicateError,
    NotFoundError,
    TransientTransportError,
    UnknownUserError,
)
from botcore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30  # seconds
UNKNOWN_USER_ERROR_TYPES = {"UserNotFound", "UnknownUser", "UnknownRecipient"}


class ProviderClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or self._create_client(timeout)

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        """Create async HTTP client for the provider API."""
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def send(self, user_id: str, object: dict[str, Any]) -> dict[str, Any] | None:
        """Deliver `object` to `user_id`. Returns the provider's delivery record."""
        return await self._post("/message", {"to": user_id, "object": object}, operation="send")

    async def seal(self, link: str) -> dict[str, Any] | None:
        """Ask the provider to anchor `link` on the ledger."""
        return await self._post("/seal", {"link": link}, operation="seal")

    async def _post(self, path: str, body: dict[str, Any], operation: str) -> dict[str, Any] | None:
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=body)
        except httpx.RequestError as e:
            logger.warning("Provider request failed", operation=operation, error=str(e))
            raise TransientTransportError(f"{operation} request failed: {e}", action=operation) from e

        return self._handle_response(response, operation)

    def _handle_response(self, response: httpx.Response, operation: str) -> dict[str, Any] | None:
        """
        Translate a provider response.

        Raises:
            UnknownUserError: 404 naming an unknown recipient
            NotFoundError: any other 404
            DuplicateError: 409
            TransientTransportError: everything else that is not a success
        """
        logger.debug(
            f"Provider {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                logger.warning(f"Provider {operation} returned non-JSON body")
                return None

        error_body = self._error_body(response)
        message = error_body.get("message") or response.text or response.reason_phrase

        if response.status_code == 404:
            if error_body.get("type") in UNKNOWN_USER_ERROR_TYPES:
                raise UnknownUserError(message, action=operation)
            raise NotFoundError(message, action=operation)

        if response.status_code == 409:
            raise DuplicateError(message, action=operation)

        logger.warning(
            f"Provider {operation} failed", status_code=response.status_code, error=message
        )
        raise TransientTransportError(message, status_code=response.status_code, action=operation)

    @staticmethod
    def _error_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        if not isinstance(body, dict):
            return {}
        error = body.get("error", body)
        return error if isinstance(error, dict) else {"message": str(error)}

"""HTTP client for the catalog's request/response API."""

import logging
from typing import Any

import httpx

from ..catalog import Record
from ..exceptions import (
    ConflictError,
    NotFoundError,
    ShelfsyncError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS: dict[int, type[ShelfsyncError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
}


class CatalogClient:
    """Client for listing and mutating books on the catalog server.

    Mutations are acknowledged here; their events arrive separately on the
    real-time channel, in no guaranteed order relative to this response.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. "http://localhost:5000/api".
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> dict[str, Any]:
        """Make a request and unwrap the response envelope.

        Raises:
            ValidationError, ConflictError, NotFoundError: Mapped from the
                server's 400, 409 and 404 responses.
            TransportError: On network failure or any other error status.
        """
        logger.debug(f"API request: {method} {path}")
        try:
            response = await self._client.request(method, path, json=json_data)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout: {method} {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or f"HTTP Error: {response.status_code}"

        if response.is_success:
            return body

        error_type = _ERRORS_BY_STATUS.get(response.status_code)
        if error_type is not None:
            raise error_type(message)
        raise TransportError(message)

    async def list_books(self) -> list[Record]:
        body = await self._request("GET", "/books")
        return [Record.from_dict(b) for b in body.get("data", [])]

    async def get_book(self, book_id: str) -> Record:
        body = await self._request("GET", f"/books/{book_id}")
        return Record.from_dict(body["data"])

    async def create_book(self, fields: dict[str, Any]) -> Record:
        body = await self._request("POST", "/books", fields)
        return Record.from_dict(body["data"])

    async def update_book(self, book_id: str, fields: dict[str, Any]) -> Record:
        body = await self._request("PUT", f"/books/{book_id}", fields)
        return Record.from_dict(body["data"])

    async def delete_book(self, book_id: str) -> Record:
        body = await self._request("DELETE", f"/books/{book_id}")
        return Record.from_dict(body["data"])

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

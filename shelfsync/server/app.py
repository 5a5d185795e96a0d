"""FastAPI application for the catalog authority.

Serves the request/response book API and the real-time WebSocket channel.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import protocol
from ..catalog import RecordFields, RecordStore
from ..config import Config
from ..exceptions import ConflictError, NotFoundError, ProtocolError, ValidationError
from .broadcaster import MutationBroadcaster
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


def create_app(
    config: Config,
    store: RecordStore,
    registry: ConnectionRegistry | None = None,
    broadcaster: MutationBroadcaster | None = None,
) -> FastAPI:
    """Create the catalog server application.

    Args:
        config: Application configuration.
        store: The authoritative RecordStore.
        registry: Optional ConnectionRegistry; built from the store if None.
        broadcaster: Optional MutationBroadcaster; built from the registry
            if None.

    Returns:
        Configured FastAPI application.
    """
    if registry is None:
        registry = ConnectionRegistry(
            store, max_pending_messages=config.server.max_pending_messages
        )
    if broadcaster is None:
        broadcaster = MutationBroadcaster(registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Catalog server ready with {store.count} books")
        yield
        await registry.close_all()
        logger.info("Catalog server stopped")

    app = FastAPI(
        title="Shelfsync",
        description="Real-time synchronized book catalog",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store references for route handlers
    app.state.config = config
    app.state.store = store
    app.state.registry = registry
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
    )

    # ==================== Error Handlers ====================

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return _error(400, "Request body must be a JSON object")

    @app.exception_handler(ConflictError)
    async def conflict_error(request: Request, exc: ConflictError):
        return _error(409, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_error(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {exc}",
            exc_info=exc,
        )
        return _error(500, "Internal server error")

    # ==================== API Routes (JSON) ====================

    @app.get("/api/books")
    async def list_books() -> dict[str, Any]:
        """Get all books in insertion order."""
        books = store.list()
        return {
            "success": True,
            "data": [b.to_dict() for b in books],
            "count": len(books),
        }

    @app.get("/api/books/{book_id}")
    async def get_book(book_id: str) -> dict[str, Any]:
        """Get a single book."""
        return {"success": True, "data": store.get(book_id).to_dict()}

    @app.post("/api/books", status_code=201)
    async def create_book(payload: Any = Body(default=None)) -> dict[str, Any]:
        """Add a book and broadcast it to every viewer."""
        fields = RecordFields.from_payload(payload)
        record = store.create(fields)
        broadcaster.created(record)

        return {
            "success": True,
            "data": record.to_dict(),
            "message": "Book added successfully",
        }

    @app.put("/api/books/{book_id}")
    async def update_book(
        book_id: str, payload: Any = Body(default=None)
    ) -> dict[str, Any]:
        """Replace a book's fields and broadcast the change."""
        # Unknown id wins over a bad payload
        store.get(book_id)
        fields = RecordFields.from_payload(payload)
        record, previous = store.update(book_id, fields)
        broadcaster.updated(record, previous)

        return {
            "success": True,
            "data": record.to_dict(),
            "message": "Book updated successfully",
        }

    @app.delete("/api/books/{book_id}")
    async def delete_book(book_id: str) -> dict[str, Any]:
        """Remove a book and broadcast the removal."""
        record = store.delete(book_id)
        broadcaster.deleted(record)

        return {
            "success": True,
            "data": record.to_dict(),
            "message": "Book deleted successfully",
        }

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Liveness check with the number of connected viewers."""
        return {
            "success": True,
            "message": "Server is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connected_clients": registry.count,
            "books": store.count,
        }

    # ==================== Real-time Channel ====================

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        """Push the snapshot, then every event, to one viewer."""
        await websocket.accept()
        session = registry.open(websocket.send_text, closer=websocket.close)

        try:
            while True:
                received = await websocket.receive()
                if received["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(received.get("code", 1000))
                frame = received.get("text") or received.get("bytes") or ""
                try:
                    message = protocol.decode(frame)
                except ProtocolError as e:
                    logger.warning(f"Bad frame from {session.session_id}: {e}")
                    continue

                if message["type"] == protocol.REQUEST_SNAPSHOT:
                    registry.send_snapshot(session)
                else:
                    logger.debug(
                        f"Ignoring '{message['type']}' from {session.session_id}"
                    )
        except WebSocketDisconnect:
            pass
        finally:
            await registry.close(session)

    return app

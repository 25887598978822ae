"""HTTP query surface for stored ping statistics."""

import logging
import threading
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from pingo.database import StatsStore
from pingo.errors import InvalidTimeFormatError, StorageError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
RECENT_LIMIT = 1000


def create_app(store: StatsStore) -> FastAPI:
    """Create the FastAPI application serving `store`.

    Handlers are plain functions, so FastAPI runs them on its thread pool
    and concurrent requests each read through their own connection.
    """
    app = FastAPI(title="pingo", docs_url=None, redoc_url=None)
    app.state.store = store
    index_html = (TEMPLATE_DIR / "index.html").read_text(encoding="utf-8")

    @app.exception_handler(InvalidTimeFormatError)
    async def invalid_time_handler(request: Request, exc: InvalidTimeFormatError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Query failed: %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "storage error"})

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return index_html

    @app.get("/api/stats")
    def stats(start: str = "", end: str = "", since: str = "") -> list[dict]:
        """Stored records, oldest first.

        - start and end (YYYY-MM-DDTHH:MM:SS, UTC): inclusive range
        - since (RFC 3339): records newer than this instant, for polling
        - neither: the most recent records
        """
        if start and end:
            rows = store.between(start, end)
        elif since:
            rows = store.since(since)
        else:
            rows = store.recent(RECENT_LIMIT)
        return [row.to_dict() for row in rows]

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    return app


def start_server_thread(app: FastAPI, port: int, host: str = "0.0.0.0") -> tuple[uvicorn.Server, threading.Thread]:
    """Serve `app` with uvicorn on a daemon thread.

    Returns:
        The server (set `should_exit` to stop it) and its thread
    """
    # Request lines go to uvicorn.access; logging_config decides whether they show
    config = uvicorn.Config(app, host=host, port=port, log_config=None)
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, name="pingo-http", daemon=True)
    thread.start()
    logger.info("Web server starting on http://localhost:%d", port)
    return server, thread

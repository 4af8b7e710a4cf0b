"""
Classroom Bulk Downloader: FastAPI Service

This is the service the browser extension talks to:
1. The content script pushes page snapshots, clicks and history events
2. The panel reads the candidate files and edits the selection
3. Downloads run individually or as one ZIP into the download directory
4. The same message contracts are available over a WebSocket (/ws/extension)
"""

# Load environment variables FIRST before any other imports
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (parent of bulk_downloader/)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pythonjsonlogger import jsonlogger

from . import __version__
from .config import Settings
from .contexts import ExtensionRuntime
from .files.session_context import SessionContext, get_session_context, set_session_context
from .schemas import (
    ClickSignal, DownloadRequest, NavigationEvent, PageSnapshot, SelectionUpdate, SessionContextPayload
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        line = super().format(record)
        return f"{color}{line}{self.RESET}"


def setup_logging(log_file: str):
    """Console (colored), daily-rotated JSON file and plain error file."""

    logger = logging.getLogger("bulk_downloader")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%H:%M:%S'
    ))
    logger.addHandler(console_handler)

    # Rotates daily, keeps 7 days of logs.
    file_handler = TimedRotatingFileHandler(
        log_file, when="midnight", interval=1, backupCount=7, encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
    ))
    logger.addHandler(file_handler)

    error_log = str(Path(log_file).with_suffix('.error.log'))
    error_handler = logging.FileHandler(error_log, mode='a', encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(error_handler)

    return logger

logger = setup_logging(Settings.from_env().log_file)

# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

def create_app(settings: Optional[Settings] = None, runtime_factory=ExtensionRuntime) -> FastAPI:
    """
    Build the service.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        runtime_factory: Builds the foreground/background pair from settings
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        runtime = runtime_factory(cfg)
        app.state.runtime = runtime
        app.state.connections = []
        await runtime.start()
        logger.info("=" * 60)
        logger.info("  CLASSROOM BULK DOWNLOADER STARTING")
        logger.info("=" * 60)
        logger.info("  Extension WebSocket: ws://localhost:8000/ws/extension")
        logger.info("  Health Check:        http://localhost:8000/health")
        logger.info("=" * 60)
        yield
        await runtime.stop()
        logger.info("  CLASSROOM BULK DOWNLOADER SHUTTING DOWN")

    app = FastAPI(
        title="Classroom Bulk Downloader",
        description="Detects Classroom attachments and downloads them in bulk",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"chrome-extension://.*|https://classroom\.google\.com",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def runtime_of(request: Request) -> ExtensionRuntime:
        return request.app.state.runtime

    @app.get("/")
    async def root(request: Request):
        """Status endpoint."""
        fg = runtime_of(request).foreground
        return {
            "service": "Classroom Bulk Downloader",
            "status": "running",
            "version": __version__,
            "collection": fg.state.collection_id,
            "panel_enabled": fg.panel_enabled,
            "connections": len(request.app.state.connections),
        }

    @app.get("/health")
    async def health():
        """Simple health check endpoint."""
        logger.debug("Health check")
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.post("/page")
    async def push_page(snapshot: PageSnapshot, request: Request):
        """
        Receive the rendered page from the content script.

        The location goes through the session tracker; ``scan: true`` runs a
        full scan right away.
        """
        fg = runtime_of(request).foreground
        transition = await fg.load_page(snapshot.html, snapshot.location)
        result = {"transition": transition.value, "collectionId": fg.state.collection_id}
        if snapshot.scan:
            entries = await fg.scan()
            result["scanned"] = entries is not None
        result.update(fg.state.snapshot())
        return result

    @app.post("/page/click")
    async def page_click(signal: ClickSignal, request: Request):
        """A click in the page schedules a scan of the clicked section."""
        fg = runtime_of(request).foreground
        try:
            task = fg.on_click(signal.selector)
        except Exception as e:
            logger.error(f"[CLICK] Failed: {e}")
            return {"scheduled": False, "error": str(e)}
        return {"scheduled": task is not None}

    @app.post("/navigation")
    async def navigation(event: NavigationEvent, request: Request):
        """pushState / replaceState / popstate from the page."""
        fg = runtime_of(request).foreground
        transition = await fg.navigate(event.location, event.trigger)
        return {"transition": transition.value, "collectionId": fg.state.collection_id}

    @app.post("/session/context")
    async def update_session_context(payload: SessionContextPayload):
        """
        Update session context from the extension.

        The cookies and headers of the active Classroom session let the
        service fetch files as the signed-in user.
        """
        ctx = SessionContext.from_extension_message(payload.model_dump())
        set_session_context(ctx)
        return {
            "status": "ok",
            "base_url": ctx.base_url,
            "cookies_count": len(ctx.cookies),
            "headers_count": len(ctx.headers),
            "collection_hint": ctx.collection_hint,
        }

    @app.get("/session/context")
    async def get_current_session():
        """Get the current session context status."""
        ctx = get_session_context()
        if ctx:
            return {
                "status": "active",
                "base_url": ctx.base_url,
                "cookies_count": len(ctx.cookies),
                "headers_count": len(ctx.headers),
                "collection_hint": ctx.collection_hint,
            }
        return {"status": "no_session", "message": "No session context available"}

    @app.get("/files")
    async def list_files(request: Request):
        """Candidate files of the current collection and the selection."""
        fg = runtime_of(request).foreground
        snapshot = fg.state.snapshot()
        snapshot["panelEnabled"] = fg.panel_enabled
        snapshot["scanning"] = fg.scanner.is_scanning
        return snapshot

    @app.post("/selection")
    async def update_selection(update: SelectionUpdate, request: Request):
        state = runtime_of(request).foreground.state
        if update.select_all is True:
            state.select_all()
        elif update.select_all is False:
            state.clear_selection()
        elif update.selected:
            state.select(update.ids)
        else:
            state.deselect(update.ids)
        return state.snapshot()

    @app.post("/download")
    async def download(body: DownloadRequest, request: Request):
        """Download the current selection, individually or as one ZIP."""
        fg = runtime_of(request).foreground
        return await fg.download_selected(zip=body.zip)

    @app.post("/messages")
    async def messages(message: dict, request: Request):
        """Deliver a raw message contract (``action`` picks the handler)."""
        return await runtime_of(request).route(message)

    @app.websocket("/ws/extension")
    async def extension_websocket(websocket: WebSocket):
        """
        WebSocket endpoint for the extension.
        Each text frame is a message contract; the reply carries the same ``id``.

        Includes heartbeat mechanism to keep connection alive.
        """
        runtime: ExtensionRuntime = websocket.app.state.runtime
        connections: List[WebSocket] = websocket.app.state.connections
        await websocket.accept()
        connections.append(websocket)
        logger.info(f"Extension connected from {websocket.client}")

        async def heartbeat():
            try:
                while True:
                    await asyncio.sleep(30)
                    try:
                        await websocket.send_json({"type": "PING", "timestamp": datetime.now().isoformat()})
                        logger.debug("Heartbeat PING sent to extension")
                    except Exception:
                        break  # Connection closed, exit heartbeat
            except asyncio.CancelledError:
                pass

        heartbeat_task = asyncio.create_task(heartbeat())

        try:
            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive_text(), timeout=120.0)
                except asyncio.TimeoutError:
                    try:
                        await websocket.send_json({"type": "PING", "timestamp": datetime.now().isoformat()})
                        continue
                    except Exception:
                        logger.warning("Extension connection stale - no response to ping")
                        break

                try:
                    payload = json.loads(data)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON from extension: {e}")
                    await websocket.send_json({"type": "ERROR", "error": "Invalid JSON"})
                    continue

                if not isinstance(payload, dict):
                    await websocket.send_json({"type": "ERROR", "error": "Expected a JSON object"})
                    continue
                if payload.get("type") == "PONG":
                    logger.debug("Heartbeat PONG received from extension")
                    continue

                response = await runtime.route(payload)
                await websocket.send_json({"type": "RESPONSE", "id": payload.get("id"), "data": response})

        except WebSocketDisconnect:
            pass  # Normal disconnect
        except Exception as e:
            logger.error(f"Extension WebSocket error: {e}")
        finally:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass
            if websocket in connections:
                connections.remove(websocket)
            logger.info("Extension disconnected")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="debug")

# wt/server.py
"""
FastAPI server for the wt CLI.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.responses import JSONResponse, PlainTextResponse

from wt.analysis.report import report_filename
from wt.errors import ConfigError, ReplayError, TopologyError
from wt.runtime import TopologyRuntime
from wt.utils.log import get_logger
from wt.utils.validate import ConfigUpdate, RecordStart, ReplayStart

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(runtime: TopologyRuntime) -> FastAPI:
    """
    Build a FastAPI instance bound to one topology runtime.

    The live driver runs for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.runtime.start()
        logger.info("Live pipeline started (scanner: %s)", type(app.state.runtime.scanner).__name__)
        try:
            yield
        finally:
            await app.state.runtime.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(TopologyError)
    async def topology_error(request: Request, exc: TopologyError) -> JSONResponse:
        if isinstance(exc, ReplayError) and "not found" in str(exc):
            return _error(404, str(exc))
        if isinstance(exc, (ConfigError, ReplayError)):
            return _error(400, str(exc))
        logger.exception("Request %s failed", request.url.path)
        return _error(500, str(exc))

    @app.exception_handler(RequestValidationError)
    async def invalid_payload(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return _error(400, f"{field}: {message}" if field else message)

    # mount all API endpoints first
    @app.get("/api/health", response_class=JSONResponse)
    async def health(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content=request.app.state.runtime.health())

    @app.get("/api/config", response_class=JSONResponse)
    async def get_config(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content=request.app.state.runtime.config_view())

    @app.put("/api/config", response_class=JSONResponse)
    async def put_config(request: Request, update: ConfigUpdate) -> JSONResponse:
        """
        Apply a partial config update; all-or-nothing.
        """
        content = request.app.state.runtime.reconfigure(update.wire_updates())
        return JSONResponse(status_code=200, content=content)

    @app.get("/api/record/status", response_class=JSONResponse)
    async def record_status(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content=request.app.state.runtime.recorder.status())

    @app.post("/api/record/start", response_class=JSONResponse)
    async def record_start(request: Request, body: RecordStart | None = None) -> JSONResponse:
        recorder = request.app.state.runtime.recorder
        try:
            status = recorder.start(body.path if body else None)
        except OSError as exc:
            return _error(500, f"Cannot open recording: {exc}")
        return JSONResponse(status_code=200, content=status)

    @app.post("/api/record/stop", response_class=JSONResponse)
    async def record_stop(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content=request.app.state.runtime.recorder.stop())

    @app.get("/api/replay/status", response_class=JSONResponse)
    async def replay_status(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content=request.app.state.runtime.replay.status())

    @app.post("/api/replay/start", response_class=JSONResponse)
    async def replay_start(request: Request, body: ReplayStart) -> JSONResponse:
        """
        Replay a recorded NDJSON file; live scanning pauses meanwhile.
        """
        status = await request.app.state.runtime.start_replay(body.path, body.speed, body.loop)
        return JSONResponse(status_code=200, content=status)

    @app.post("/api/replay/stop", response_class=JSONResponse)
    async def replay_stop(request: Request) -> JSONResponse:
        status = await request.app.state.runtime.stop_replay()
        return JSONResponse(status_code=200, content=status)

    @app.get("/api/report.md", response_class=PlainTextResponse)
    async def report(request: Request):
        runtime = request.app.state.runtime
        markdown = runtime.report_markdown()
        if markdown is None:
            return _error(404, "No snapshot available yet")
        generated = datetime.fromtimestamp(runtime.clock() / 1000, tz=timezone.utc)
        return PlainTextResponse(
            markdown,
            media_type="text/markdown; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{report_filename(generated, "md")}"'},
        )

    @app.websocket("/ws")
    async def snapshots(websocket: WebSocket) -> None:
        """
        Push the last snapshot on connect, then every new one.
        """
        runtime = websocket.app.state.runtime
        await websocket.accept()
        queue = runtime.hub.subscribe()
        logger.info("WebSocket client connected (%d total)", len(runtime.hub))

        async def push() -> None:
            if runtime.last_snapshot is not None:
                await websocket.send_json(runtime.last_snapshot.to_dict())
            while True:
                snapshot = await queue.get()
                await websocket.send_json(snapshot.to_dict())

        sender = asyncio.create_task(push())
        try:
            # inbound messages are ignored; only the close matters
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            runtime.hub.unsubscribe(queue)
            logger.info("WebSocket client disconnected (%d left)", len(runtime.hub))

    # mount the static UI last
    static_dir = Path(__file__).parent / "webapp"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="webapp")
    else:
        logger.warning("Static directory %s does not exist", static_dir)

    return app

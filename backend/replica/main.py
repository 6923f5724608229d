import asyncio
import base64
from typing import Dict, List, Optional, Set

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from .errors import RateLimitError, ReplicaError, ValidationError
from .export import build_archive
from .log import setup_logger
from .models import CloneOptions, CloneRequestModel, CloneResponseModel, CloneResultModel, CloneRun, LogEntry, RunStatus
from .pipeline import ClonePipeline, build_pipeline

logger = setup_logger("replica.api")


# Store active WebSocket connections
class ConnectionManager:
    def __init__(self):
        # run id -> Set of connected websockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, run_id: str):
        await websocket.accept()
        self.active_connections.setdefault(run_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, run_id: str):
        if run_id in self.active_connections:
            self.active_connections[run_id].discard(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]

    async def broadcast_status(self, run_id: str, data: dict):
        disconnected = set()
        for websocket in list(self.active_connections.get(run_id, ())):
            try:
                await websocket.send_json(data)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.add(websocket)

        for websocket in disconnected:
            self.disconnect(websocket, run_id)


manager = ConnectionManager()

_pipeline: Optional[ClonePipeline] = None

# Keeps broadcast tasks referenced until they finish
_broadcasts: Set[asyncio.Task] = set()


def get_pipeline() -> ClonePipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


app = FastAPI(
    title="Website Replica API",
    description="API for replicating websites into self-contained HTML documents",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3002", "http://localhost", "http://127.0.0.1", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_message(run: CloneRun) -> dict:
    data = {
        "request_id": run.id,
        "status": run.status.value,
        "url": run.url,
        "progress": run.progress,
        "current_step": run.current_step,
    }
    if run.status == RunStatus.ERROR:
        data["error"] = _error_message(run)
    return data


def _error_message(run: CloneRun) -> Optional[str]:
    if run.status != RunStatus.ERROR:
        return None
    return run.current_step[len("Error: "):] if run.current_step.startswith("Error: ") else run.current_step


def _result(run: CloneRun, include_html: bool = True) -> CloneResultModel:
    metadata = run.metadata.model_dump(mode="json")
    metadata.update(
        strategy=run.strategy.value if run.strategy else None,
        score=run.score,
        analysis=run.analysis,
        created_at=run.created_at.isoformat(),
        completed_at=run.completed_at.isoformat() if run.completed_at else None,
    )
    return CloneResultModel(
        request_id=run.id,
        status=run.status.value,
        url=run.url,
        progress=run.progress,
        current_step=run.current_step,
        cloned_html=run.html if include_html and run.status == RunStatus.COMPLETED else None,
        error=_error_message(run),
        metadata=metadata,
    )


def _get_run(pipeline: ClonePipeline, run_id: str) -> CloneRun:
    run = pipeline.repository.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Clone request not found")
    return run


def _require_completed(run: CloneRun):
    if run.status != RunStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Clone request is not completed (status: {run.status.value})"
        )


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {"message": "Website Replica API is running"}


@app.post("/api/clone", response_model=CloneResponseModel)
async def clone_website(request: CloneRequestModel, background_tasks: BackgroundTasks,
                        http_request: Request, pipeline: ClonePipeline = Depends(get_pipeline)):
    """Initiate a website cloning process"""
    identifier = http_request.client.host if http_request.client else "default"
    try:
        run = pipeline.prepare(request.url, request.options, identifier=identifier)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RateLimitError as e:
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(int(e.retry_after) + 1)},
        )

    background_tasks.add_task(process_clone_request, pipeline, run, request.options)

    return {
        "request_id": run.id,
        "status": run.status.value,
        "url": run.url
    }


@app.get("/api/clones", response_model=List[CloneResultModel])
async def list_clones(pipeline: ClonePipeline = Depends(get_pipeline)):
    """List every known clone run, newest first"""
    return [_result(run, include_html=False) for run in pipeline.repository.list()]


@app.get("/api/clone/{request_id}", response_model=CloneResultModel)
async def get_clone_result(request_id: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    """Get the result of a cloning request"""
    return _result(_get_run(pipeline, request_id))


@app.delete("/api/clone/{request_id}")
async def delete_clone(request_id: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    if not pipeline.repository.delete(request_id):
        raise HTTPException(status_code=404, detail="Clone request not found")
    return {"request_id": request_id, "deleted": True}


@app.get("/api/clone/{request_id}/html", response_class=HTMLResponse)
async def get_clone_html(request_id: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    """Get the cloned HTML directly"""
    run = _get_run(pipeline, request_id)
    _require_completed(run)
    if not run.html:
        raise HTTPException(status_code=400, detail="No HTML content available")
    return run.html


@app.get("/api/clone/{request_id}/logs", response_model=List[LogEntry])
async def get_clone_logs(request_id: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    return _get_run(pipeline, request_id).logs


@app.get("/api/clone/{request_id}/export")
async def export_clone(request_id: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    """Download the clone as a ZIP archive with separate asset files"""
    run = _get_run(pipeline, request_id)
    _require_completed(run)
    archive = build_archive(run)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="replica-{run.id[:8]}.zip"'},
    )


@app.get("/api/clone/{request_id}/assets/{asset_path:path}")
async def get_asset(request_id: str, asset_path: str, pipeline: ClonePipeline = Depends(get_pipeline)):
    """Serve a downloaded asset by its local path"""
    run = _get_run(pipeline, request_id)
    wanted = f"./assets/{asset_path}"
    asset = next((a for a in run.assets if a.local_path == wanted), None)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")

    if asset.content.startswith("data:") and ";base64," in asset.content:
        header, payload = asset.content.split(";base64,", 1)
        return Response(content=base64.b64decode(payload), media_type=header[len("data:"):])
    return Response(content=asset.content, media_type=asset.mime_type or "text/plain")


async def process_clone_request(pipeline: ClonePipeline, run: CloneRun, options: CloneOptions):
    """Background task to process a website cloning request"""

    def on_progress(progress: int, step: str):
        message = _status_message(run)
        message.update(progress=progress, current_step=step)
        task = asyncio.get_running_loop().create_task(manager.broadcast_status(run.id, message))
        _broadcasts.add(task)
        task.add_done_callback(_broadcasts.discard)

    try:
        await pipeline.execute(run, options, on_progress=on_progress)
    except ReplicaError as e:
        logger.error(f"Clone of {run.url} failed: {e}", extra={"run_id": run.id})

    await manager.broadcast_status(run.id, _status_message(run))


@app.websocket("/ws/{request_id}")
async def websocket_endpoint(websocket: WebSocket, request_id: str,
                             pipeline: ClonePipeline = Depends(get_pipeline)):
    await manager.connect(websocket, request_id)
    try:
        # Send initial status if request exists
        run = pipeline.repository.get(request_id)
        if run is not None:
            await websocket.send_json(_status_message(run))

        # Keep the connection open until client disconnects
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        manager.disconnect(websocket, request_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)

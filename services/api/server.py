"""
Wan Video Generator HTTP API

FastAPI server that provides:
- POST   /api/generate           Start a generation
- GET    /api/status/{id}        Poll a generation (stores the video on completion)
- DELETE /api/status/{id}        Cancel a generation
- POST   /api/status/{id}/thumbnail  Re-fetch a missing thumbnail
- GET    /api/history            List generations (query / status / start / end)
- DELETE /api/history            Delete one (?id=...) or everything (?all=true)
- GET    /api/videos/{filename}  Serve a stored video or thumbnail
- GET    /api/presets            Built-in parameter presets
- GET    /api/health             Health check

Usage:
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 3000

    # Or via main.py
    python main.py server
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse

from core.config import get_config
from core.errors import (
    ArtifactTransferError,
    CancelError,
    GenerationNotFound,
    ProviderError,
    UnknownProviderStatus,
    ValidationError,
)
from services.video_generation import (
    GenerationCoordinator,
    GenerationStatus,
    create_coordinator,
)
from services.video_generation.artifacts import InvalidArtifactName
from services.video_generation.presets import DEFAULT_PRESETS

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"

router = APIRouter(prefix="/api")


def get_coordinator(request: Request) -> GenerationCoordinator:
    return request.app.state.coordinator


def status_payload(record) -> dict:
    """Status boundary response for a record."""
    data = {"status": record.status.value, "progress": record.progress}
    optional = {
        "videoUrl": record.video_url,
        "thumbnailUrl": record.thumbnail_url,
        "error": record.error,
        "executionTime": record.execution_time,
    }
    data.update({k: v for k, v in optional.items() if v is not None})
    return data


@router.post("/generate")
async def generate(
    request: Request,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
):
    """Validate parameters, enqueue the job and record it as queued."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError([{"field": "payload", "message": "Malformed JSON body"}])

    record = await coordinator.submit(payload)

    return {
        "jobId": record.id,
        "status": record.status.value,
        "estimatedTime": record.estimated_time,
    }


@router.get("/status/{job_id}")
async def get_status(job_id: str, coordinator: GenerationCoordinator = Depends(get_coordinator)):
    """Current status; the first poll that sees completion stores the video."""
    record = await coordinator.poll(job_id)
    return status_payload(record)


@router.delete("/status/{job_id}")
async def cancel_generation(job_id: str, coordinator: GenerationCoordinator = Depends(get_coordinator)):
    record = await coordinator.cancel(job_id)
    return {"success": True, "status": record.status.value}


@router.post("/status/{job_id}/thumbnail")
async def regenerate_thumbnail(job_id: str, coordinator: GenerationCoordinator = Depends(get_coordinator)):
    record = await coordinator.regenerate_thumbnail(job_id)
    return status_payload(record)


@router.get("/history")
async def get_history(
    query: Optional[str] = None,
    status: Optional[str] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
):
    status_filter = None
    if status:
        try:
            status_filter = GenerationStatus(status)
        except ValueError:
            raise ValidationError([{"field": "status", "message": f"Unknown status {status!r}"}])

    records = await coordinator.history(query=query, status=status_filter, start=start, end=end)
    return {"history": [r.to_dict() for r in records]}


@router.delete("/history")
async def delete_history(
    id: Optional[str] = None,
    all: Optional[str] = None,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
):
    if all == "true":
        count = await coordinator.purge()
        return {"success": True, "message": "History cleared", "deleted": count}

    if id:
        await coordinator.delete(id)
        return {"success": True, "message": "Generation deleted"}

    raise HTTPException(status_code=400, detail="Missing id or all parameter")


@router.get("/videos/{filename}")
async def get_video(filename: str, coordinator: GenerationCoordinator = Depends(get_coordinator)):
    """Serve a stored artifact. Names are checked before touching the filesystem."""
    path, content_type = coordinator.artifacts.resolve(filename)

    if not path.is_file():
        logger.info(f"Artifact not found: {filename}")
        raise HTTPException(status_code=404, detail="File not found")

    headers = {"Cache-Control": CACHE_CONTROL}
    if content_type.startswith("video/"):
        headers["Accept-Ranges"] = "bytes"

    return FileResponse(path, media_type=content_type, headers=headers)


@router.get("/presets")
async def get_presets():
    return {"presets": [p.to_dict() for p in DEFAULT_PRESETS]}


@router.get("/health")
async def health(coordinator: GenerationCoordinator = Depends(get_coordinator)):
    database = await coordinator.healthy()
    return JSONResponse(
        {
            "status": "ok" if database else "degraded",
            "database": database,
            "provider": coordinator.provider.circuit_status(),
            "timestamp": datetime.utcnow().isoformat(),
            "service": get_config().service_name,
        },
        status_code=200 if database else 503,
    )


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def register_error_handlers(app: FastAPI) -> None:
    """Map lifecycle errors onto HTTP responses."""

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError):
        return _error(400, "Invalid parameters", details=exc.details)

    @app.exception_handler(InvalidArtifactName)
    async def on_invalid_artifact(request: Request, exc: InvalidArtifactName):
        logger.warning(f"Rejected artifact request: {request.url.path}")
        return _error(400, str(exc))

    @app.exception_handler(GenerationNotFound)
    async def on_not_found(request: Request, exc: GenerationNotFound):
        return _error(404, str(exc))

    @app.exception_handler(CancelError)
    async def on_cancel_error(request: Request, exc: CancelError):
        return _error(409, str(exc), code=exc.error_code)

    @app.exception_handler(ProviderError)
    async def on_provider_error(request: Request, exc: ProviderError):
        logger.error(f"Provider error on {request.url.path}: {exc}")
        return _error(502, "Failed to start generation", code=exc.error_code)

    @app.exception_handler(ArtifactTransferError)
    async def on_artifact_error(request: Request, exc: ArtifactTransferError):
        status_code = 409 if exc.error_code == "NOT_COMPLETED" else 502
        return _error(status_code, str(exc), code=exc.error_code)

    @app.exception_handler(UnknownProviderStatus)
    async def on_unknown_status(request: Request, exc: UnknownProviderStatus):
        return _error(502, str(exc), code=exc.error_code)

    @app.exception_handler(HTTPException)
    async def on_http_exception(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))


def create_app(coordinator: Optional[GenerationCoordinator] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        coordinator: Optional pre-built coordinator; when omitted one is
            created from configuration at startup and closed at shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Wan video generator API...")
        owned = coordinator is None
        app.state.coordinator = coordinator or await create_coordinator()

        yield

        logger.info("Shutting down Wan video generator API...")
        if owned:
            await app.state.coordinator.close()

    app = FastAPI(
        title="Wan Video Generator API",
        description="Submit, track and browse Wan video generations",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()

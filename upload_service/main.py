import os
import threading
import time
from contextlib import asynccontextmanager
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from upload_service import logger
from upload_service.config import Settings, load_settings
from upload_service.database import VideoStore, create_db_engine
from upload_service.errors import (
    MalformedReferenceError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    UpstreamStorageError,
    ValidationError,
    service_error_handler,
)
from upload_service.metrics import (
    FILE_SIZE_HISTOGRAM,
    PRESIGN_FAILURES,
    UPLOAD_COUNTER,
    UPLOAD_LATENCY,
)
from upload_service.middleware import (
    CorrelationMiddleware,
    RecoveryMiddleware,
    get_correlation_id,
    get_logger,
)
from upload_service.storage import DEFAULT_CONTENT_TYPE, S3Storage, object_key_for

UPLOAD_FIELD = "video"
MAX_VIDEO_ID = 2 ** 31 - 1  # PostgreSQL INTEGER

router = APIRouter()
crash_router = APIRouter()


def _measure(fileobj) -> int:
    current_pos = fileobj.tell()
    fileobj.seek(0, 2)
    size = fileobj.tell()
    fileobj.seek(current_pos)
    return size


async def _file_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    # Spooled uploads may have rolled over to disk
    return await run_in_threadpool(_measure, upload.file)


@router.get("/health")
async def health_check(request: Request):
    get_logger(request).info("Health check requested")
    return {"status": "healthy"}


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_video(request: Request):
    start_time = time.perf_counter()
    try:
        size = await _store_upload(request)
        UPLOAD_COUNTER.inc()
        FILE_SIZE_HISTOGRAM.observe(size)
        return Response(status_code=status.HTTP_201_CREATED)
    finally:
        # Always track latency
        UPLOAD_LATENCY.observe(time.perf_counter() - start_time)


async def _store_upload(request: Request) -> int:
    """
    Store the ``video`` form file in the object store, then record its
    metadata. The object write always precedes the row insert; a failed
    insert leaves the object orphaned and is logged as such.
    """
    log = get_logger(request).bind(component="upload_handler")
    storage = request.app.state.storage
    videos = request.app.state.videos

    try:
        form = await request.form()
    except Exception as e:
        log.error("Failed to parse upload form", fields={"error": e})
        raise ValidationError(str(e))

    try:
        upload = form.get(UPLOAD_FIELD)
        if not isinstance(upload, UploadFile) or not upload.filename:
            message = f"missing form file field '{UPLOAD_FIELD}'"
            log.error("Failed to get file from form", fields={"error": message})
            raise ValidationError(message)

        filename = upload.filename
        size = await _file_size(upload)
        log.info("Video upload started", fields={"filename": filename, "size": size})

        object_name = object_key_for(filename)
        content_type = upload.content_type or DEFAULT_CONTENT_TYPE

        await upload.seek(0)
        try:
            await run_in_threadpool(storage.put_object, object_name, upload.file, size, content_type)
        except (ClientError, BotoCoreError) as e:
            log.error("Object store upload failed", fields={"filename": filename, "error": e})
            raise UpstreamStorageError(str(e))
    finally:
        await form.close()

    reference = storage.reference_for(object_name)
    log.info("Video uploaded to object store", fields={
        "filename": filename,
        "object_name": object_name,
        "url": reference,
        "size": size,
    })

    timestamp = int(time.time())
    try:
        video_id = await run_in_threadpool(videos.insert, filename, reference, timestamp)
    except SQLAlchemyError as e:
        # No compensating delete: the stored object stays orphaned
        log.error("Failed to store video metadata", fields={
            "filename": filename,
            "object_name": object_name,
            "orphaned_object": True,
            "error": e,
        })
        raise PersistenceError(str(e))

    log.info("Video metadata stored in database", fields={
        "filename": filename,
        "video_id": video_id,
        "timestamp": timestamp,
    })
    return size


@router.get("/videos")
async def list_videos(request: Request):
    """All videos; a row whose URL cannot be signed keeps its raw reference"""
    log = get_logger(request)
    storage = request.app.state.storage
    videos = request.app.state.videos
    log.info("Listing all videos")

    try:
        rows = await run_in_threadpool(videos.list_all)
    except SQLAlchemyError as e:
        log.error("Failed to query videos", fields={"error": e})
        raise PersistenceError(str(e))

    results = []
    for video in rows:
        try:
            url = storage.resolve_url(video.storage_reference)
        except (MalformedReferenceError, ClientError, BotoCoreError) as e:
            log.warn("Failed to generate presigned URL", fields={
                "video_id": video.id,
                "url": video.storage_reference,
                "error": e,
            })
            PRESIGN_FAILURES.labels(endpoint="/videos").inc()
            url = video.storage_reference
        results.append(video.to_dict(url))

    log.info("Videos retrieved successfully", fields={"count": len(results)})
    return results


@router.get("/video/{video_id}")
async def get_video(video_id: str, request: Request):
    log = get_logger(request).bind(video_id=video_id)
    storage = request.app.state.storage
    videos = request.app.state.videos
    log.info("Getting video by ID")

    try:
        pk = int(video_id)
    except ValueError:
        pk = None
    if pk is None or not 0 < pk <= MAX_VIDEO_ID:
        log.error("Video not found", fields={"error": "invalid video id"})
        raise NotFoundError("Video not found")

    try:
        video = await run_in_threadpool(videos.get, pk)
    except SQLAlchemyError as e:
        log.error("Failed to query video", fields={"error": e})
        raise PersistenceError(str(e))
    if video is None:
        log.error("Video not found")
        raise NotFoundError("Video not found")

    try:
        url = storage.resolve_url(video.storage_reference)
    except MalformedReferenceError as e:
        log.error("Invalid object store reference", fields={"url": video.storage_reference, "error": e})
        raise MalformedReferenceError("Invalid video URL")
    except (ClientError, BotoCoreError) as e:
        log.error("Failed to generate presigned URL", fields={"error": e})
        PRESIGN_FAILURES.labels(endpoint="/video").inc()
        raise UpstreamStorageError("Failed to generate video URL")

    log.info("Video retrieved successfully with presigned URL", fields={"name": video.name})
    return video.to_dict(url)


def _crash(correlation_id: str) -> None:
    logger.fatal("Application crash triggered by /crash endpoint",
                 fields={"correlation_id": correlation_id})


@crash_router.get("/crash")
async def crash(request: Request):
    """Self-test fault injection: terminate the process after a short delay"""
    log = get_logger(request)
    correlation_id = get_correlation_id(request)
    delay = request.app.state.settings.crash_delay_seconds

    log.warn(f"Crash endpoint called - application will terminate in {delay:g} seconds")

    timer = threading.Timer(delay, _crash, args=(correlation_id,))
    timer.daemon = True
    timer.start()

    return {
        "message": f"Application will crash in {delay:g} seconds to simulate failure",
        "pod": os.getenv("HOSTNAME", ""),
        "correlation_id": correlation_id,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owned_store: Optional[VideoStore] = None

    if app.state.storage is None:
        try:
            storage = S3Storage(settings)
            storage.ensure_bucket()
        except (ClientError, BotoCoreError) as e:
            logger.fatal("Failed to initialize object store", e, {
                "endpoint": settings.storage_endpoint_url,
                "bucket": settings.bucket_name,
            })
            raise
        app.state.storage = storage
        logger.info("Object store client initialized", {
            "endpoint": settings.storage_endpoint_url,
            "bucket": settings.bucket_name,
            "ssl": settings.storage_use_ssl,
        })

    if app.state.videos is None:
        try:
            owned_store = VideoStore(create_db_engine(settings))
            owned_store.ping()
            logger.info("Connected to database", {"host": settings.db_host, "db": settings.db_name})
            owned_store.create_schema()
        except SQLAlchemyError as e:
            logger.fatal("Failed to initialize database", e, {
                "host": settings.db_host,
                "db": settings.db_name,
            })
            raise
        app.state.videos = owned_store
        logger.info("Videos table initialized")

    yield

    if owned_store is not None:
        owned_store.dispose()
    logger.info("Server stopped")


def create_app(settings: Optional[Settings] = None, storage=None, videos=None) -> FastAPI:
    """
    Build the application. Collaborators that are not injected are built
    from settings at startup.
    """
    settings = settings or load_settings()
    logger.initialize(settings.log_level, settings.log_format, settings.kubernetes)

    app = FastAPI(title="Video Upload Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.videos = videos

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RecoveryMiddleware)
    # Added last so it wraps everything else
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(ServiceError, service_error_handler)

    # Metrics
    app.mount("/metrics", make_asgi_app())

    app.include_router(router)
    if settings.crash_endpoint_enabled:
        app.include_router(crash_router)
    return app


app = create_app()


def main():
    import uvicorn

    settings = app.state.settings
    logger.info("Server starting", {"port": settings.port})
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    main()

"""
HTTP API routes for the report pipeline.

Provides endpoints for:
- Starting a pipeline for a subject
- Querying pipeline status and result
- Pause / resume / retry
- Listing inbox documents
"""

import logging
from pathlib import PurePosixPath
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException

from reportflow.config import Settings
from reportflow.models.pipeline import Pipeline
from reportflow.models.schemas import PipelineResult, PipelineView, ProcessRequest, SourceDocument
from reportflow.services.job_manager import JobManager, PipelineSession, get_job_manager
from reportflow.services.pipeline import InvalidStateError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])


def _resolve_document(request: ProcessRequest, settings: Settings) -> SourceDocument | None:
    """Build the document reference from an inbox filename or a URL.

    Raises:
        404: Inbox file not found
        422: Filename is not a plain name inside the inbox
    """

    if request.document_filename:
        if PurePosixPath(request.document_filename).name != request.document_filename:
            raise HTTPException(
                status_code=422,
                detail=f"Invalid document filename: {request.document_filename}",
            )
        path = settings.inbox_dir / request.document_filename
        if not path.is_file():
            raise HTTPException(
                status_code=404,
                detail=f"Document not found: {request.document_filename}",
            )
        return SourceDocument(filename=request.document_filename, path=path)

    if request.document_url:
        name = PurePosixPath(urlparse(request.document_url).path).name or "document.pdf"
        return SourceDocument(filename=name, url=request.document_url)

    return None


def _require_session(job_manager: JobManager, subject_id: str) -> PipelineSession:
    session = job_manager.get(subject_id)
    if session is None or session.orchestrator.pipeline is None:
        raise HTTPException(status_code=404, detail=f"Pipeline not found: {subject_id}")
    return session


@router.post("/pipelines", response_model=Pipeline, status_code=202)
async def start_pipeline(
    request: ProcessRequest,
    job_manager: JobManager = Depends(get_job_manager),
) -> Pipeline:
    """
    Start processing a document for a subject.

    Use WebSocket /ws/{subject_id} to receive real-time progress updates.

    Raises:
        404: Document not found in inbox
        409: A run is already active for this subject
        422: Invalid document or options
    """
    document = _resolve_document(request, job_manager.settings)

    try:
        session = job_manager.get_or_create(request.subject_id)
    except ValueError as e:
        logger.error(f"Cannot configure providers: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    try:
        pipeline = await session.orchestrator.start(
            document,
            request.document_type,
            voice_id=request.voice_id,
            voice_settings=request.voice_settings,
            avatar_id=request.avatar_id,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    logger.info(f"Started pipeline {pipeline.id} for {request.subject_id}")
    return pipeline


@router.get("/pipelines", response_model=list[Pipeline])
async def list_pipelines(job_manager: JobManager = Depends(get_job_manager)) -> list[Pipeline]:
    """List pipelines known to this process."""
    return job_manager.list_pipelines()


@router.get("/pipelines/{subject_id}", response_model=PipelineView)
async def get_pipeline(
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> PipelineView:
    """
    Get pipeline status with notifications and notices.

    Raises:
        404: No pipeline for this subject
    """
    return _require_session(job_manager, subject_id).view()


@router.post("/pipelines/{subject_id}/pause", response_model=Pipeline)
async def pause_pipeline(
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> Pipeline:
    session = _require_session(job_manager, subject_id)
    try:
        return await session.orchestrator.pause()
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/pipelines/{subject_id}/resume", response_model=Pipeline)
async def resume_pipeline(
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> Pipeline:
    session = _require_session(job_manager, subject_id)
    try:
        return await session.orchestrator.resume()
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/pipelines/{subject_id}/retry", response_model=Pipeline)
async def retry_pipeline(
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> Pipeline:
    session = _require_session(job_manager, subject_id)
    try:
        return await session.orchestrator.retry_failed_stage()
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.get("/pipelines/{subject_id}/result", response_model=PipelineResult)
async def get_result(
    subject_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> PipelineResult:
    """
    Get the aggregate result of a completed pipeline.

    Raises:
        404: No pipeline, or the pipeline has not completed
    """
    session = _require_session(job_manager, subject_id)
    result = session.orchestrator.result
    if result is None:
        raise HTTPException(status_code=404, detail=f"No result yet for {subject_id}")
    return result


@router.get("/inbox", response_model=list[str])
async def list_inbox_files(job_manager: JobManager = Depends(get_job_manager)) -> list[str]:
    """
    List PDF documents in the inbox directory.

    Returns:
        Sorted PDF filenames
    """
    settings = job_manager.settings

    if not settings.inbox_dir.exists():
        return []

    files = [
        f.name
        for f in settings.inbox_dir.iterdir()
        if f.is_file() and f.suffix.lower() == ".pdf"
    ]

    return sorted(files)

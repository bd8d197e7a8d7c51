from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from dockerize.schemas import (
    ArchiveFormat,
    ExtractResponse,
    ImageExistsResponse,
    PullRequest,
    PullResponse,
    PullResult,
    RunRequest,
    RunResponse,
    Scheme,
)
from dockerize.services import packaging
from dockerize.services.orchestrator import ContainerRunOrchestrator, get_orchestrator
from dockerize.services.schemes import ConfigurationError, SchemeStore, UnknownSchemeError, get_scheme_store

router = APIRouter(prefix="/api", tags=["api"])

OrchestratorDep = Depends(get_orchestrator)
SchemeStoreDep = Depends(get_scheme_store)

_MEDIA_TYPES = {
    ArchiveFormat.zip: "application/zip",
    ArchiveFormat.deflate: "application/octet-stream",
}


def _configuration_failure(exc: ConfigurationError) -> HTTPException:
    if isinstance(exc, UnknownSchemeError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def _run(orchestrator: ContainerRunOrchestrator, payload: RunRequest) -> str:
    try:
        return await orchestrator.run_with_output(payload.scheme, payload.target)
    except ConfigurationError as exc:
        raise _configuration_failure(exc) from exc


@router.get("/schemes", response_model=List[Scheme])
async def list_schemes(store: SchemeStore = SchemeStoreDep) -> List[Scheme]:
    try:
        return [Scheme.model_validate(item) for item in store.schemes()]
    except ConfigurationError as exc:
        raise _configuration_failure(exc) from exc


# Images --------------------------------------------------------------------------
@router.get("/images/exists", response_model=ImageExistsResponse)
async def image_exists(
    reference: str = Query(..., min_length=1),
    orchestrator: ContainerRunOrchestrator = OrchestratorDep,
) -> ImageExistsResponse:
    exists = await orchestrator.image_exists(reference)
    return ImageExistsResponse(reference=reference, exists=exists)


@router.post("/images/pull", response_model=PullResponse)
async def pull_images(
    payload: PullRequest, orchestrator: ContainerRunOrchestrator = OrchestratorDep
) -> PullResponse:
    outcomes = await orchestrator.pull_images(payload.images)
    return PullResponse(results=[PullResult.model_validate(item) for item in outcomes])


# Runs ----------------------------------------------------------------------------
@router.post("/runs", response_model=RunResponse)
async def run_container(
    payload: RunRequest, orchestrator: ContainerRunOrchestrator = OrchestratorDep
) -> RunResponse:
    output = await _run(orchestrator, payload)
    return RunResponse(scheme=payload.scheme, target=payload.target, output=output)


@router.post("/runs/archive")
async def run_container_archive(
    payload: RunRequest,
    format: ArchiveFormat = ArchiveFormat.zip,
    orchestrator: ContainerRunOrchestrator = OrchestratorDep,
) -> Response:
    output = await _run(orchestrator, payload)
    if format is ArchiveFormat.zip:
        body = packaging.zip_pack(output)
    else:
        body = packaging.compress(output)
    return Response(content=body, media_type=_MEDIA_TYPES[format])


@router.post("/archives/extract", response_model=ExtractResponse)
async def extract_archive(request: Request, format: ArchiveFormat = ArchiveFormat.zip) -> ExtractResponse:
    body = await request.body()
    try:
        if format is ArchiveFormat.zip:
            output = packaging.zip_unpack(body)
        else:
            output = packaging.decompress(body)
    except packaging.ArchiveFormatError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ExtractResponse(output=output)

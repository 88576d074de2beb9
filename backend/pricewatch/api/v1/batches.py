"""Batch run API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from pricewatch.api.v1.scrapers import resolve_runner
from pricewatch.core.exceptions import BatchAlreadyRunningError
from pricewatch.dependencies import get_batch_service, get_factory
from pricewatch.schemas import (
    ApiResponse,
    BatchProgressResponse,
    BatchResultResponse,
    BatchRunRequest,
    BatchStatusResponse,
    ProductDataResponse,
)
from pricewatch.scrapers.batch import BatchItem, BatchResult
from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.services.batch_service import BatchService

router = APIRouter()


def _result_response(result: BatchResult) -> BatchResultResponse:
    return BatchResultResponse(
        id=result.id,
        gtin=result.gtin,
        success=result.success,
        data=ProductDataResponse(**result.data.to_dict()) if result.data else None,
        error=result.error,
        duration=result.duration,
        cached=result.cached,
    )


def _status_response(service: BatchService) -> BatchStatusResponse:
    progress = service.processor.last_progress
    return BatchStatusResponse(
        running=service.is_running,
        retailer=service.retailer,
        progress=BatchProgressResponse(**progress.to_dict()) if progress else None,
        results=[_result_response(r) for r in service.processor.results],
        error=service.error,
    )


@router.post(
    "",
    response_model=ApiResponse[BatchStatusResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_batch(
    request: BatchRunRequest,
    factory: ScraperFactory = Depends(get_factory),
    service: BatchService = Depends(get_batch_service),
):
    """Start a background batch run. Only one run may be active at a time."""
    if service.is_running:
        raise HTTPException(status_code=409, detail="A batch is already running")

    runner = resolve_runner(factory, request.retailer)
    items = [BatchItem(id=i.id, gtin=i.gtin, name=i.name) for i in request.items]
    try:
        service.start(request.retailer, items, runner)
    except BatchAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return ApiResponse(data=_status_response(service))


@router.get("/current", response_model=ApiResponse[BatchStatusResponse])
async def current_batch(service: BatchService = Depends(get_batch_service)):
    """Progress and results of the current or most recent run."""
    return ApiResponse(data=_status_response(service))


@router.post("/current/stop", response_model=ApiResponse[BatchStatusResponse])
async def stop_batch(service: BatchService = Depends(get_batch_service)):
    """Ask the running batch to stop after its in-flight items."""
    if not service.stop():
        raise HTTPException(status_code=409, detail="No batch is running")
    return ApiResponse(data=_status_response(service))

# controller/blob_controller.py
from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from model.api import BlobInfoResponse, BlobListResponse, BlobStatsResponse
from service.ingestion_service import IngestionService
from util.constants import InternalURIs
from util.functions import content_disposition
from controller.controller_dependencies import get_ingestion_service, rate_limit

blob_router = APIRouter(dependencies=[Depends(rate_limit)])


@blob_router.get(InternalURIs.BLOBS, response_model=BlobListResponse)
async def list_blobs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: IngestionService = Depends(get_ingestion_service),
) -> BlobListResponse:
    return await service.list_blobs(limit=limit, offset=offset)


@blob_router.get(InternalURIs.BLOB_STATS, response_model=BlobStatsResponse)
async def blob_stats(
    service: IngestionService = Depends(get_ingestion_service),
) -> BlobStatsResponse:
    return await service.blob_stats()


@blob_router.get(InternalURIs.BLOB_INFO, response_model=BlobInfoResponse)
async def blob_info(
    storage_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> BlobInfoResponse:
    return await service.blob_info(storage_id)


@blob_router.get(InternalURIs.BLOB_CONTENT)
async def download_blob(
    storage_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> StreamingResponse:
    info, stream = await service.open_blob(storage_id)
    return StreamingResponse(
        stream,
        media_type=info.content_type,
        headers={
            "Content-Disposition": content_disposition(info.display_name),
            "Content-Length": str(info.byte_length),
        },
    )


@blob_router.delete(InternalURIs.BLOB_CONTENT, status_code=status.HTTP_204_NO_CONTENT)
async def delete_blob(
    storage_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> Response:
    await service.delete_blob(storage_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# controller/job_controller.py
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from model.api import (
    CreateJobRequest,
    CreateJobResponse,
    JobListResponse,
    JobProgressResponse,
    ProcessorStatsResponse,
)
from model.job import Job
from service.ingestion_service import IngestionService
from util.constants import InternalURIs
from util.enums import JobStatus
from controller.controller_dependencies import get_ingestion_service, rate_limit

job_router = APIRouter(dependencies=[Depends(rate_limit)])


@job_router.post(
    InternalURIs.JOBS,
    response_model=CreateJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_job(
    payload: CreateJobRequest,
    service: IngestionService = Depends(get_ingestion_service),
) -> CreateJobResponse:
    return await service.create_job(payload)


@job_router.get(InternalURIs.JOBS, response_model=JobListResponse)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: IngestionService = Depends(get_ingestion_service),
) -> JobListResponse:
    return service.list_jobs(status=status_filter, limit=limit, offset=offset)


# Registered before JOB_DETAIL so "stats" is never read as a job id.
@job_router.get(InternalURIs.JOB_STATS, response_model=ProcessorStatsResponse)
async def job_stats(
    service: IngestionService = Depends(get_ingestion_service),
) -> ProcessorStatsResponse:
    return service.stats()


@job_router.get(InternalURIs.JOB_PROGRESS, response_model=JobProgressResponse)
async def job_progress(
    job_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> JobProgressResponse:
    return service.progress(job_id)


@job_router.get(InternalURIs.JOB_DETAIL, response_model=Job)
async def job_detail(
    job_id: str,
    service: IngestionService = Depends(get_ingestion_service),
) -> Job:
    return service.job_detail(job_id)

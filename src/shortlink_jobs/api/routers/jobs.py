"""Job administration endpoints: status, statistics, manual triggers and resets."""

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from shortlink_jobs.api.dependencies import scheduler_service_dependency
from shortlink_jobs.scheduler.service import JobAlreadyRunningError, JobSchedulerService


router = APIRouter()


class ResetJobStatsRequest(BaseModel):
    job_name: str = "all"

    model_config = ConfigDict(
        json_schema_extra={"example": {"job_name": "url_expiration"}}
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/status", tags=["jobs"])
async def job_status(service: JobSchedulerService = Depends(scheduler_service_dependency)) -> dict:
    return jsonable_encoder({
        "scheduler": service.get_scheduler_status(),
        "url_statistics": await service.get_job_statistics(),
        "timestamp": _now(),
    })


@router.get("/statistics", tags=["jobs"])
async def expiration_statistics(service: JobSchedulerService = Depends(scheduler_service_dependency)) -> dict:
    return jsonable_encoder({
        "statistics": await service.get_job_statistics(),
        "generated_at": _now(),
    })


@router.post("/url-expiration/trigger", tags=["jobs"])
async def trigger_url_expiration(service: JobSchedulerService = Depends(scheduler_service_dependency)):
    try:
        result = await service.trigger_url_expiration_job()
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    payload = jsonable_encoder({"job_result": asdict(result), "triggered_at": _now()})
    if result.success:
        return payload
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)


@router.post("/password-reset-cleanup/trigger", tags=["jobs"])
async def trigger_password_reset_cleanup(service: JobSchedulerService = Depends(scheduler_service_dependency)) -> dict:
    try:
        success = await service.trigger_password_reset_cleanup_job()
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return jsonable_encoder({
        "success": success,
        "stats": asdict(service.get_cleanup_job_stats()),
        "triggered_at": _now(),
    })


@router.post("/reset", tags=["jobs"])
async def reset_job_stats(
    payload: ResetJobStatsRequest = ResetJobStatsRequest(),
    service: JobSchedulerService = Depends(scheduler_service_dependency),
) -> dict:
    try:
        service.reset_job_statistics(payload.job_name)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job '{payload.job_name}' not found") from exc
    return jsonable_encoder({"reset_job": payload.job_name, "reset_at": _now()})

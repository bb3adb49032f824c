"""Health-check endpoint returning the current job scheduler status."""

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder

from shortlink_jobs.api.dependencies import get_scheduler_service


router = APIRouter()


@router.get("/", tags=["health"])
async def healthcheck() -> dict:
    service = get_scheduler_service()
    return {
        "ok": True,
        "scheduler": jsonable_encoder(service.get_scheduler_status()),
    }

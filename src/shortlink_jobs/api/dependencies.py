"""Shared FastAPI dependencies exposing the job scheduler service."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException

from shortlink_jobs.scheduler.service import JobSchedulerService


_scheduler_service: Optional[JobSchedulerService] = None


def set_scheduler_service(service: Optional[JobSchedulerService]) -> None:
    global _scheduler_service
    _scheduler_service = service


def get_scheduler_service() -> JobSchedulerService:
    if _scheduler_service is None:
        raise HTTPException(status_code=503, detail="Job scheduler service not ready")
    return _scheduler_service


def scheduler_service_dependency(service: JobSchedulerService = Depends(get_scheduler_service)) -> JobSchedulerService:
    return service

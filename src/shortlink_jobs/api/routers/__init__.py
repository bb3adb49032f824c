"""HTTP router factory wiring health and job administration endpoints."""

from fastapi import APIRouter

from . import health, jobs


def create_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, prefix="/health")
    router.include_router(jobs.router, prefix="/jobs")
    return router

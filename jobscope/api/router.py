from fastapi import APIRouter

from jobscope.api.jobs import router as jobs_router
from jobscope.api.queues import router as queues_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
api_router.include_router(queues_router, prefix="/api", tags=["queues"])

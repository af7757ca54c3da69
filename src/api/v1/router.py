from fastapi import APIRouter
from src.api.v1.endpoints import jobs, clusters


api_router = APIRouter()

api_router.include_router(jobs.router, tags=["jobs"])
api_router.include_router(clusters.router, prefix="/clusters", tags=["clusters"])

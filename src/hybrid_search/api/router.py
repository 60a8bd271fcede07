"""Main API router aggregating all endpoints."""

from fastapi import APIRouter

from hybrid_search.api import routes

router = APIRouter(prefix="/v1")

router.include_router(routes.router, tags=["search"])

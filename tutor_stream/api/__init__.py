"""API router for v1 endpoints."""

from fastapi import APIRouter

from tutor_stream.api import tutor

router = APIRouter()

router.include_router(tutor.router, prefix="/tutor", tags=["tutor"])

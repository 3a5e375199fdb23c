"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tutor_stream.api import router as api_router
from tutor_stream.core.config import get_settings
from tutor_stream.core.logging import setup_logging

settings = get_settings()
setup_logging(settings.TUTOR_ENV)

app = FastAPI(
    title="Tutor Stream",
    description="Streams tutor replies with page directives for a document viewer",
    version="0.1.0",
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check with the stream timing clients should expect."""
    return JSONResponse(
        content={
            "status": "ok",
            "env": settings.TUTOR_ENV,
            "heartbeat_interval_seconds": settings.HEARTBEAT_INTERVAL_SECONDS,
            "stream_timeout_seconds": settings.STREAM_TIMEOUT_SECONDS,
            "persistence": "supabase" if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE_KEY else "memory",
        },
        status_code=200,
    )


app.include_router(api_router, prefix="/v1", tags=["v1"])

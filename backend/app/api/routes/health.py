"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /healthz: readiness, checks database connectivity
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backend.app.api.deps import get_services
from backend.app.services import RagServices

router = APIRouter()


async def check_db(services: RagServices) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    if services.engine is None:
        return (True, "not_configured")

    try:
        async with services.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except (SQLAlchemyError, OSError) as e:
        return (False, f"error: {type(e).__name__}")


def check_worker(services: RagServices) -> tuple[bool, str]:
    """Check the background ingestion worker is running."""
    if services.worker.running:
        return (True, "ok")
    return (False, "stopped")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    services: Annotated[RagServices, Depends(get_services)],
) -> dict[str, Any] | JSONResponse:
    """Readiness check.

    Returns:
        200 with component status if core systems ok
        503 if the database or worker is down
    """
    db_ok, db_status = await check_db(services)
    worker_ok, worker_status = check_worker(services)

    core_ok = db_ok and worker_ok

    response_body = {
        "status": "ok" if core_ok else "degraded",
        "components": {
            "db": db_status,
            "ingestion_worker": worker_status,
            "embeddings": "configured"
            if services.settings.openai_key or services.settings.embedding_provider == "hash"
            else "missing_api_key",
        },
    }

    if not core_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body

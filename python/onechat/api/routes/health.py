"""Health endpoints.

- GET /health: liveness, no dependencies touched
- GET /health/ready: database and redis reachability; redis is optional
  (the API degrades without it) so only a database failure returns 503
"""

from typing import Annotated

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onechat.api.deps import get_db, get_redis
from onechat.logging import get_logger
from onechat.responses import success_response

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    return success_response({"status": "ok"})


@router.get("/health/ready")
def readiness_check(
    db: Annotated[Session, Depends(get_db)],
    redis_client: Annotated[redis.Redis | None, Depends(get_redis)],
):
    checks = {"database": "ok", "redis": "disabled"}

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("readiness_database_failed", error=str(e))
        checks["database"] = "error"

    if redis_client is not None:
        try:
            redis_client.ping()
            checks["redis"] = "ok"
        except redis.RedisError as e:
            logger.warning("readiness_redis_failed", error=str(e))
            checks["redis"] = "error"

    if checks["database"] != "ok":
        return JSONResponse(
            status_code=503, content=success_response({"status": "degraded", **checks})
        )
    return success_response({"status": "ok", **checks})

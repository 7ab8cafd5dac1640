# shopcart/api/routers/health.py
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from shopcart.data.database import ping
from shopcart.domain.errors import CacheUnavailable
from shopcart.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    """
    database down -> 503 (bez store nie ma poprawnosci)
    cache down -> degraded, ale 200
    """
    state = request.app.state
    checks = {"database": "up", "cache": "up"}

    try:
        ping(state.engine)
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unreachable: {e}")
        checks["database"] = "down"

    if state.cache is None:
        checks["cache"] = "disabled"
    else:
        try:
            state.cache.ping()
        except CacheUnavailable as e:
            logger.warning(f"Health check: cache unreachable: {e}")
            checks["cache"] = "down"

    if checks["database"] == "down":
        status, code = "unhealthy", 503
    elif checks["cache"] == "down":
        status, code = "degraded", 200
    else:
        status, code = "healthy", 200

    return JSONResponse(
        status_code=code,
        content={"service": "cart-service", "status": status, **checks},
    )

"""
Health Endpoints

Liveness for load balancers and a detailed check that probes the database.
No authentication required.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import check_database_connection, get_db
from app.schemas.common import HealthCheck

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthCheck, response_model_exclude_none=True)
def health():
    return HealthCheck(status="healthy", timestamp=datetime.now(timezone.utc).isoformat())


@router.get("/detailed", response_model=HealthCheck)
def detailed_health(db: Session = Depends(get_db)):
    """Reports "degraded" when the database does not answer."""
    database_ok = check_database_connection(db)
    return HealthCheck(
        status="healthy" if database_ok else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks={"database": "healthy" if database_ok else "unhealthy"},
    )

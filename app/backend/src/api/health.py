"""Health check and metrics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..db import get_session_dependency
from ..models import PaymentMethod

router = APIRouter(tags=["health"])


@router.get("/health/live")
def liveness() -> dict[str, str]:
    return {"status": "live"}


@router.get("/health/ready")
def readiness(session: Session = Depends(get_session_dependency)) -> dict[str, object]:
    """Check the database and the reference data batch processing depends on."""

    session.execute(text("SELECT 1"))
    code = get_settings().batch_default_payment_method
    configured = session.execute(
        select(PaymentMethod.id).where(PaymentMethod.code == code, PaymentMethod.is_active.is_(True))
    ).first() is not None
    return {"status": "ready", "default_payment_method": code, "payment_method_configured": configured}


@router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.apps.api.deps import get_db
from rentflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rentflow.apps.api.response import SuccessEnvelope, success_response


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request, db: AsyncSession = Depends(get_db)):
    # The ledger is the only hard dependency; gateway and push outages degrade, never fail health.
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health_database_unavailable", exc_info=exc)
        payload = HealthResponse(status="degraded", database="unavailable")
        return JSONResponse(content=success_response(request=request, data=payload.model_dump()), status_code=503)
    return success_response(request=request, data=HealthResponse(status="ok", database="ok"))

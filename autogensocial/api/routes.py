from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..core.logging import get_logger
from ..dependencies import get_content_orchestrator
from ..orchestration.service import ContentOrchestrator
from ..schemas.orchestrator import ErrorResponse, InvalidRequestBody

router = APIRouter()
logger = get_logger(name=__name__)


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        return InvalidRequestBody(raw=raw.decode("utf-8", errors="replace"), error=str(exc))


@router.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/orchestrate_content", tags=["orchestration"])
async def orchestrate_content(
    request: Request,
    orchestrator: ContentOrchestrator = Depends(get_content_orchestrator),
) -> JSONResponse:
    body = await _read_json_body(request)
    response = await orchestrator.orchestrate(body)
    if isinstance(response, ErrorResponse):
        return JSONResponse(status_code=response.status_code, content=response.to_body())
    return JSONResponse(status_code=status.HTTP_200_OK, content=response.to_body())


@router.get("/agent_runs/{run_id}", tags=["orchestration"])
async def get_agent_run(
    run_id: str,
    orchestrator: ContentOrchestrator = Depends(get_content_orchestrator),
) -> dict[str, Any]:
    record = await orchestrator.get_agent_run(run_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent run not found")
    return record

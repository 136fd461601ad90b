"""
Execution API routes.
"""
from fastapi import APIRouter

from codegate.api.dependencies import get_gateway
from codegate.api.exceptions import handle_route_exceptions
from codegate.api.models.schemas import (
    ErrorViewModel,
    ExecuteRequest,
    ExecuteResponse,
    HealthResponse,
)
from codegate.classifier import error_view
from codegate.types import Success

router = APIRouter(tags=["execute"])


@router.post("/execute", response_model=ExecuteResponse)
@handle_route_exceptions
async def execute(request: ExecuteRequest):
    result = await get_gateway().execute(request.code, request.intent)
    if isinstance(result, Success):
        return ExecuteResponse(
            ok=True,
            value=result.value,
            output=result.output,
            calls_used=result.calls_used,
        )

    view = error_view(result)
    return ExecuteResponse(
        ok=False,
        kind=result.kind.value,
        message=result.message,
        meta={k: v for k, v in result.meta.items() if k != "code"},
        calls_used=result.meta.get("calls_used", 0),
        error_view=ErrorViewModel(title=view.title, detail=view.detail, hint=view.hint),
    )


@router.get("/health", response_model=HealthResponse)
@handle_route_exceptions
async def health():
    gateway = get_gateway()
    return HealthResponse(
        status="ok",
        sandbox_level=gateway.config.sandbox.level.value,
        state=gateway.state.value,
    )

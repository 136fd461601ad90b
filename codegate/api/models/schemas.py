"""
Pydantic models for API requests and responses.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Any, Optional


class ExecuteRequest(BaseModel):
    code: str = Field(..., description="Body of an async function using read()/write()")
    intent: str = ""


class ErrorViewModel(BaseModel):
    title: str
    detail: str
    hint: str


class ExecuteResponse(BaseModel):
    ok: bool
    value: Any = None
    output: List[str] = Field(default_factory=list)
    calls_used: int = 0
    kind: Optional[str] = None
    message: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    error_view: Optional[ErrorViewModel] = None


class HealthResponse(BaseModel):
    status: str
    sandbox_level: str
    state: str

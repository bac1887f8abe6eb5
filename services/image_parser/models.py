from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ImageParseRequest(BaseModel):
    # typed loosely so a non-string image is rejected as InputError, not by pydantic
    image: Any = None
    provider: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str


class ProviderInfo(BaseModel):
    name: str
    model: str
    server_key_configured: bool


class ProvidersResponse(BaseModel):
    providers: List[ProviderInfo] = Field(default_factory=list)
    rate_limit_max_requests: int
    rate_limit_window_s: float
    test_mode: bool = False

"""API request/response models for the relay."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, field_validator


class ChatMessage(BaseModel):
    """One message of a /chat request body."""
    role: Literal["user", "assistant", "system"]
    content: Optional[str] = ""
    timestamp: Optional[datetime] = None

    @field_validator("content")
    @classmethod
    def null_content_is_blank(cls, value: Optional[str]) -> str:
        return value or ""


class ChatReply(BaseModel):
    """Non-streamed /chat response."""
    message: str
    raw: Dict[str, Any]


class ModelInfo(BaseModel):
    name: str
    description: str


class ModelsResponse(BaseModel):
    models: List[ModelInfo]


class HealthResponse(BaseModel):
    ok: bool
    gemini: bool
    apiKeyConfigured: bool

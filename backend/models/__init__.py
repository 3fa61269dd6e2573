"""Data models for the AVAS chat relay."""
from .conversation import Conversation, Turn, USER, ASSISTANT, SYSTEM, ROLES
from .api import ChatMessage, ChatReply, ModelInfo, ModelsResponse, HealthResponse

__all__ = [
    "Conversation",
    "Turn",
    "USER",
    "ASSISTANT",
    "SYSTEM",
    "ROLES",
    "ChatMessage",
    "ChatReply",
    "ModelInfo",
    "ModelsResponse",
    "HealthResponse",
]

"""Conversation data models."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

USER = "user"
ASSISTANT = "assistant"
SYSTEM = "system"
ROLES = (USER, ASSISTANT, SYSTEM)

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings, epoch milliseconds (as sent by the web/mobile apps) or datetimes."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class Turn:
    """Represents a single role-tagged message in a conversation."""
    role: str
    content: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ValueError("Turn content must be a string")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Turn":
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass
class Conversation:
    """Represents a stored multi-turn conversation."""
    id: str
    title: str
    turns: List[Turn]
    created_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new_id() -> str:
        return f"conv_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def derive_title(turns: List[Turn]) -> str:
        """Title from the first user turn, truncated to 50 characters with an ellipsis."""
        for turn in turns:
            if turn.role == USER:
                content = turn.content
                if len(content) > TITLE_MAX_CHARS:
                    return content[:TITLE_MAX_CHARS] + "..."
                return content
        return DEFAULT_TITLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "turns": [turn.to_dict() for turn in self.turns],
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conversation":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            turns=[Turn.from_dict(t) for t in data["turns"]],
            created_at=_parse_timestamp(data["createdAt"]),
        )

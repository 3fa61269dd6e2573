"""Stateless relay between a client conversation and the generative backend."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from config import Settings
from models.api import ChatMessage
from models.conversation import Turn, USER, ASSISTANT, SYSTEM
from services.errors import ConfigurationError, ValidationError
from services.gemini_backend import BackendReply, GeminiBackend, GenerativeBackend

logger = logging.getLogger(__name__)

# Gemini calls the assistant "model"; every other role keeps its name
BACKEND_ROLES = {ASSISTANT: "model"}

HistoryEntry = Dict[str, Any]


def convert_turns(turns: Sequence[Turn]) -> List[HistoryEntry]:
    """Map turns onto the backend's {"role", "parts"} history shape."""
    return [
        {"role": BACKEND_ROLES.get(turn.role, turn.role), "parts": [turn.content]}
        for turn in turns
    ]


def _entry_text(entry: HistoryEntry) -> str:
    return "".join(str(part) for part in entry.get("parts", []))


def filter_history(history: List[HistoryEntry]) -> List[HistoryEntry]:
    """
    Drop blank entries, then the leading run of non-user entries.

    Gemini requires history to start with a user turn. The leading entries are
    discarded, not rewritten, so context before the first user turn is lost.
    Idempotent: a history that already starts with a non-blank user entry and
    contains no blank entries is returned unchanged.
    """
    kept = [entry for entry in history if _entry_text(entry).strip()]

    start = 0
    while start < len(kept) and kept[start]["role"] != USER:
        start += 1

    if start:
        logger.debug(f"Dropped {start} leading non-user history entries")
    return kept[start:]


def build_history(turns: Sequence[Turn]) -> List[HistoryEntry]:
    """Convert and filter prior turns into backend history."""
    return filter_history(convert_turns(turns))


def coerce_turn(item: Union[Turn, Any]) -> Turn:
    """Validate one wire message into a Turn."""
    if isinstance(item, Turn):
        return item
    try:
        message = ChatMessage.model_validate(item)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid message: {e.errors()[0]['msg']}") from e
    return Turn(role=message.role, content=message.content, timestamp=message.timestamp)


class RelayService:
    """Forwards a full conversation to the backend and relays its output unchanged."""

    def __init__(
        self,
        settings: Settings,
        backend: Optional[GenerativeBackend] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the relay.

        Args:
            settings: Process settings
            backend: Backend to use; defaults to a GeminiBackend when an API
                key is configured, otherwise the relay is unconfigured
            clock: Source of the current local time for the system instruction
        """
        self.settings = settings
        self.clock = clock

        if backend is None and settings.gemini_configured:
            backend = GeminiBackend(settings.gemini_api_key, settings.generation)
        self.backend = backend

        logger.info(f"RelayService initialized (backend configured: {self.configured})")

    @property
    def configured(self) -> bool:
        return self.backend is not None

    def relay(
        self,
        turns: Sequence[Any],
        model_name: Optional[str] = None,
        streamed: bool = True
    ) -> Union[BackendReply, Iterator[str]]:
        """
        Relay a conversation to the backend.

        Args:
            turns: Conversation turns (Turn objects or wire mappings); the last
                one must be the new user prompt
            model_name: Backend model; defaults to the configured model
            streamed: Return text fragments instead of one complete reply

        Returns:
            BackendReply, or an iterator of text fragments when streamed

        Raises:
            ValidationError: If turns is not a list or is otherwise malformed
            ConfigurationError: If no backend is configured
            UpstreamError: If the backend call fails
        """
        if not isinstance(turns, (list, tuple)):
            raise ValidationError("messages must be an array")

        # Fail fast on configuration before looking at the content
        if self.backend is None:
            raise ConfigurationError()

        turns = [coerce_turn(item) for item in turns]
        if not turns:
            raise ValidationError("messages must not be empty")
        if turns[-1].role != USER:
            raise ValidationError("last message must have role 'user'")

        model_name = model_name or self.settings.gemini_model
        history = build_history(turns[:-1])
        system_instruction = self.build_system_instruction(
            self.clock(),
            self.settings.assistant_name,
            [_entry_text(entry) for entry in history if entry["role"] == SYSTEM]
        )
        history = [entry for entry in history if entry["role"] != SYSTEM]
        prompt = turns[-1].content

        logger.info(
            f"Relaying {len(turns)} messages to {model_name} "
            f"(history={len(history)}, stream={streamed})"
        )

        if streamed:
            return self.backend.generate_stream(model_name, system_instruction, history, prompt)
        return self.backend.generate(model_name, system_instruction, history, prompt)

    @staticmethod
    def build_system_instruction(
        now: datetime,
        assistant_name: str = "AVAS",
        notes: Optional[List[str]] = None
    ) -> str:
        """
        Build the system instruction with date/time context.

        Args:
            now: Current local time
            assistant_name: Persona name
            notes: Text of system turns found in the conversation history

        Returns:
            Complete system instruction string
        """
        current_date = f"{now:%A}, {now:%B} {now.day}, {now.year}"
        current_time = now.strftime("%I:%M %p")

        notes_section = ""
        if notes:
            notes_text = "\n".join(f"• {note}" for note in notes)
            notes_section = f"""
ADDITIONAL INSTRUCTIONS FROM THE CONVERSATION:
{notes_text}
"""

        return f"""You are {assistant_name}, a highly intelligent AI assistant powered by Google Gemini with deep knowledge across all domains.

CONTEXT:
• Current date: {current_date}
• Current time: {current_time}
• You have comprehensive knowledge in: science, technology, mathematics, programming, history, literature, arts, current events, and more

ADAPTIVE INTELLIGENCE - Respond based on request type:

1. QUICK QUERIES → Brief, direct answers
2. FACTUAL QUESTIONS → Accurate info with context; use the current date for time-sensitive queries
3. DEEP EXPLANATIONS → Comprehensive, structured responses with examples
4. CODE TASKS → Production-quality code in markdown code blocks with language tags
5. CREATIVE WORK → Thoughtful, original output

RESPONSE QUALITY:
• Accurate - Never fabricate information
• Complete - Don't omit important details
• Clear - Use simple language, explain jargon
• Efficient - Be concise for simple questions, thorough for complex ones

FORMATTING:
• **bold** for key points
• `inline code` for terms, commands, variables
• Bullet points and numbered lists for clarity
• ## Headers for organizing long responses
{notes_section}
Think intelligently, respond adaptively, and be exceptionally helpful."""

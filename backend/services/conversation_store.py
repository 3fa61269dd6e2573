"""Conversation store mirrored to durable key-value storage."""
import json
import logging
from typing import List, Optional

from models.conversation import ASSISTANT, Conversation, Turn
from services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

CHATS_KEY = "avas-chats"
GREETING = "Hi, I am AVAS. Ask me anything or tap the mic to speak."


class ConversationStore:
    """
    Durable mirror of all conversations plus the active one.

    Single writer: every mutation happens on the caller's thread and is
    followed by a synchronous whole-collection save().
    """

    def __init__(self, storage: KeyValueStorage, key: str = CHATS_KEY, greeting: Optional[str] = GREETING):
        """
        Initialize the store. Call load() to read persisted conversations.

        Args:
            storage: Durable key-value storage
            key: Storage key holding the serialized collection
            greeting: Assistant turn that opens every fresh conversation
        """
        self.storage = storage
        self.key = key
        self.greeting = greeting
        self.conversations: List[Conversation] = []
        self.active_id: Optional[str] = None
        self.turns: List[Turn] = self._initial_turns()

    def _initial_turns(self) -> List[Turn]:
        return [Turn(role=ASSISTANT, content=self.greeting)] if self.greeting else []

    @property
    def active(self) -> Optional[Conversation]:
        return self.get(self.active_id) if self.active_id else None

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def load(self) -> List[Conversation]:
        """
        Read the persisted collection.

        Missing, unreadable or corrupt data yields an empty collection; this
        method never raises.

        Returns:
            The loaded conversations
        """
        try:
            raw = self.storage.get_item(self.key)
            if raw is None:
                conversations = []
            else:
                data = json.loads(raw)
                if not isinstance(data, list):
                    raise ValueError("stored chats are not a list")
                conversations = [Conversation.from_dict(item) for item in data]
        except Exception as e:
            logger.warning(f"Could not load conversations from [{self.key}], starting empty: {e}")
            conversations = []

        self.conversations = conversations
        logger.info(f"Loaded {len(conversations)} conversations")
        return conversations

    def save(self) -> None:
        """Overwrite the durable collection with the in-memory state."""
        payload = json.dumps([c.to_dict() for c in self.conversations], ensure_ascii=False)
        self.storage.set_item(self.key, payload)

    def append(self, turn: Turn) -> Conversation:
        """
        Append a turn to the active conversation and persist.

        Creates the conversation (first in the list, titled from its first user
        turn) when none is active.

        Args:
            turn: Turn to append

        Returns:
            The active conversation

        Raises:
            Exception: Whatever the storage raised; the in-memory state is
                rolled back so it still matches what was last saved
        """
        self.turns.append(turn)
        conversation = self.active
        created = conversation is None

        if created:
            conversation = Conversation(
                id=Conversation.new_id(),
                title=Conversation.derive_title(self.turns),
                turns=list(self.turns)
            )
            self.conversations.insert(0, conversation)
            self.active_id = conversation.id
        else:
            previous_turns = conversation.turns
            conversation.turns = list(self.turns)

        try:
            self.save()
        except Exception:
            self.turns.pop()
            if created:
                self.conversations.remove(conversation)
                self.active_id = None
            else:
                conversation.turns = previous_turns
            raise

        if created:
            logger.info(f"Created new conversation: {conversation.id}")
        return conversation

    def open(self, conversation_id: str) -> Optional[Conversation]:
        """Make a stored conversation active. Returns None when it does not exist."""
        conversation = self.get(conversation_id)
        if conversation is None:
            logger.warning(f"Conversation {conversation_id} not found")
            return None
        self.active_id = conversation.id
        self.turns = list(conversation.turns)
        return conversation

    def new_conversation(self) -> None:
        """Reset to a fresh, not yet persisted conversation."""
        self.active_id = None
        self.turns = self._initial_turns()

    def rename(self, conversation_id: str, new_title: str) -> bool:
        conversation = self.get(conversation_id)
        if conversation is None:
            return False
        conversation.title = new_title
        self.save()
        return True

    def delete(self, conversation_id: str) -> bool:
        """Delete a conversation; deleting the active one resets to a fresh conversation."""
        conversation = self.get(conversation_id)
        if conversation is None:
            return False
        self.conversations.remove(conversation)
        if self.active_id == conversation_id:
            self.new_conversation()
        self.save()
        logger.info(f"Deleted conversation {conversation_id}")
        return True

    def export_text(self, turns: Optional[List[Turn]] = None) -> str:
        """Plain-text transcript: one "ROLE: content" block per turn."""
        turns = self.turns if turns is None else turns
        return "\n\n".join(f"{turn.role.upper()}: {turn.content}" for turn in turns)

"""Chat session: streaming consumer and input state machine."""
import logging
from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from models.conversation import ASSISTANT, USER, Turn, utcnow
from services.conversation_store import ConversationStore
from services.errors import NetworkError, UpstreamError
from services.ndjson import NDJSONDecoder
from services.relay_client import RelayClient
from services.speech import SilentSynthesizer, SpeechRecognizer, SpeechSynthesizer

logger = logging.getLogger(__name__)

STATUS_READY = "Ready"
STATUS_PROCESSING = "Processing..."
STATUS_CANCELLED = "Cancelled"
STATUS_NO_REPLY = "No reply from model."
STATUS_NETWORK_ERROR = "Network error. Is the API running?"
STATUS_LISTENING = "Listening..."
STATUS_MIC_ERROR = "Mic error. Try again."
STATUS_NO_SPEECH = "Speech recognition not supported on this device."
STATUS_SAVE_FAILED = "Could not save chat."
STATUS_SEND_FAILED = "Something went wrong. Try again."

FALLBACK_REPLY = "Sorry, I didn't get that."


class SessionState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SENDING = "sending"
    STREAMING = "streaming"
    CANCELLED = "cancelled"
    ERRORED = "errored"


_RESTING = {SessionState.IDLE, SessionState.CANCELLED, SessionState.ERRORED}

TRANSITIONS = {
    SessionState.IDLE: {SessionState.LISTENING, SessionState.SENDING, SessionState.ERRORED},
    SessionState.LISTENING: {SessionState.IDLE, SessionState.SENDING, SessionState.ERRORED},
    SessionState.SENDING: {SessionState.STREAMING, SessionState.IDLE, SessionState.CANCELLED, SessionState.ERRORED},
    SessionState.STREAMING: {SessionState.IDLE, SessionState.CANCELLED, SessionState.ERRORED},
    SessionState.CANCELLED: {SessionState.IDLE, SessionState.LISTENING, SessionState.SENDING, SessionState.ERRORED},
    SessionState.ERRORED: {SessionState.IDLE, SessionState.LISTENING, SessionState.SENDING, SessionState.ERRORED},
}


@dataclass
class StreamState:
    """Accumulator for one in-flight request."""
    request_turns: Tuple[Turn, ...]
    buffer: str = ""
    cancelled: bool = False
    fragments: int = 0

    def append(self, fragment: str) -> None:
        self.buffer += fragment
        self.fragments += 1

    def snapshot(self) -> List[Turn]:
        return list(self.request_turns) + [Turn(role=ASSISTANT, content=self.buffer)]


class ChatSession:
    """
    Drives one chat surface: sends turns through the relay, renders the reply
    fragment by fragment, and persists completed turns.

    Only one request is in flight at a time; send() is refused while
    generating. Cancellation is cooperative and takes effect at the next
    chunk or fragment boundary.
    """

    def __init__(
        self,
        client: RelayClient,
        store: ConversationStore,
        model: Optional[str] = None,
        streamed: bool = True,
        synthesizer: Optional[SpeechSynthesizer] = None,
        recognizer: Optional[SpeechRecognizer] = None,
        on_update: Optional[Callable[[List[Turn]], None]] = None,
        on_status: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the session.

        Args:
            client: Relay client
            store: Conversation store (already loaded)
            model: Model name sent with every request (relay default if None)
            streamed: Request NDJSON streams instead of single replies
            synthesizer: Text-to-speech for completed replies
            recognizer: Speech-to-text for voice input; None disables it
            on_update: Called with the visible turns after every change
            on_status: Called with every new status line
        """
        self.client = client
        self.store = store
        self.model = model
        self.streamed = streamed
        self.synthesizer = synthesizer or SilentSynthesizer()
        self.recognizer = recognizer
        self.on_update = on_update
        self.on_status = on_status

        self.state = SessionState.IDLE
        self.status = STATUS_READY
        self.is_speaking = False
        self.stream: Optional[StreamState] = None
        self.turns: List[Turn] = list(store.turns)

    @property
    def is_generating(self) -> bool:
        return self.state in (SessionState.SENDING, SessionState.STREAMING)

    def _transition(self, state: SessionState, status: Optional[str] = None) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal session transition {self.state.name} -> {state.name}")
        logger.debug(f"Session {self.state.name} -> {state.name}")
        self.state = state
        if status is not None:
            self._set_status(status)

    def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status:
            self.on_status(status)

    def _publish(self, turns: List[Turn]) -> None:
        self.turns = turns
        if self.on_update:
            self.on_update(list(turns))

    def send(self, text: str) -> bool:
        """
        Send a user message and consume the reply.

        Returns:
            True when an assistant turn was completed and persisted
        """
        if not text.strip() or self.is_generating:
            return False

        try:
            self.store.append(Turn(role=USER, content=text, timestamp=utcnow()))
        except Exception as e:
            logger.error(f"Could not persist user turn: {e}", exc_info=True)
            self._transition(SessionState.ERRORED, STATUS_SAVE_FAILED)
            return False

        state = StreamState(request_turns=tuple(self.store.turns))
        self.stream = state

        self._transition(SessionState.SENDING, STATUS_PROCESSING)

        try:
            self._publish(state.snapshot())
            if self.streamed:
                self._consume_stream(state)
            else:
                state.append(self.client.complete(state.request_turns, self.model) or FALLBACK_REPLY)
        except NetworkError as e:
            logger.warning(f"Send failed, relay unreachable: {e.detail}")
            return self._abandon(state, SessionState.ERRORED, STATUS_NETWORK_ERROR)
        except UpstreamError as e:
            logger.warning(f"Send failed with status {e.status_code}: {e.detail}")
            return self._abandon(state, SessionState.ERRORED, f"Error: {e.detail}")
        except Exception as e:
            logger.error(f"Send failed: {e}", exc_info=True)
            return self._abandon(state, SessionState.ERRORED, STATUS_SEND_FAILED)
        finally:
            self.stream = None

        if state.cancelled:
            return self._abandon(state, SessionState.CANCELLED, STATUS_CANCELLED)

        return self._complete(state)

    def _consume_stream(self, state: StreamState) -> None:
        decoder = NDJSONDecoder()

        with closing(self.client.stream_chat(state.request_turns, self.model)) as chunks:
            for chunk in chunks:
                if state.cancelled:
                    break
                if self.state is SessionState.SENDING:
                    self._transition(SessionState.STREAMING)
                self._apply(state, decoder.feed(chunk))
                if state.cancelled:
                    break

        if not state.cancelled:
            self._apply(state, decoder.flush())
        if decoder.dropped:
            logger.debug(f"Dropped {decoder.dropped} malformed stream lines")

    def _apply(self, state: StreamState, fragments: List[str]) -> None:
        for fragment in fragments:
            if state.cancelled:
                return
            state.append(fragment)
            self._publish(state.snapshot())

    def _abandon(self, state: StreamState, target: SessionState, status: str) -> bool:
        """Discard the speculative assistant turn and restore the request turns."""
        self._transition(target, status)
        self._publish(list(state.request_turns))
        return False

    def _complete(self, state: StreamState) -> bool:
        text = state.buffer
        if not text:
            self._publish(list(state.request_turns))
            self._transition(SessionState.IDLE, STATUS_NO_REPLY)
            return False

        try:
            self.store.append(Turn(role=ASSISTANT, content=text, timestamp=utcnow()))
        except Exception as e:
            logger.error(f"Could not persist assistant turn: {e}", exc_info=True)
            return self._abandon(state, SessionState.ERRORED, STATUS_SAVE_FAILED)

        self._transition(SessionState.IDLE, STATUS_READY)
        self._publish(list(self.store.turns))
        self.speak(text)
        return True

    def cancel(self) -> None:
        """Ask the in-flight request to stop at the next chunk boundary."""
        if self.stream is not None:
            self.stream.cancelled = True

    def speak(self, text: str) -> None:
        if not text:
            return
        self.synthesizer.cancel()
        self.synthesizer.speak(text, on_start=self._speech_started, on_end=self._speech_ended)

    def _speech_started(self) -> None:
        self.is_speaking = True

    def _speech_ended(self) -> None:
        self.is_speaking = False

    def start_listening(self) -> bool:
        """Start voice input; the final transcript is sent as a message."""
        if self.state not in _RESTING:
            return False
        if self.recognizer is None:
            self._set_status(STATUS_NO_SPEECH)
            return False

        self._transition(SessionState.LISTENING, STATUS_LISTENING)
        self.recognizer.start(
            on_result=self._on_transcript,
            on_end=self._on_listen_end,
            on_error=self._on_listen_error
        )
        return True

    def stop_listening(self) -> None:
        if self.recognizer is not None and self.state is SessionState.LISTENING:
            self.recognizer.stop()

    def _on_transcript(self, transcript: str) -> None:
        if transcript and self.state is SessionState.LISTENING:
            self.send(transcript)

    def _on_listen_end(self) -> None:
        if self.state is SessionState.LISTENING:
            self._transition(SessionState.IDLE, STATUS_READY)

    def _on_listen_error(self, error: Exception) -> None:
        logger.warning(f"Speech recognition error: {error}")
        if self.state is SessionState.LISTENING:
            self._transition(SessionState.ERRORED, STATUS_MIC_ERROR)

    def new_chat(self) -> bool:
        if self.is_generating:
            return False
        self.store.new_conversation()
        self._reset_view()
        return True

    def open_chat(self, conversation_id: str) -> bool:
        if self.is_generating or self.store.open(conversation_id) is None:
            return False
        self._reset_view()
        return True

    def _reset_view(self) -> None:
        self._publish(list(self.store.turns))
        if self.state is not SessionState.IDLE:
            self._transition(SessionState.IDLE)
        self._set_status(STATUS_READY)
